import os
from escrowdesk import create_app

app = create_app()

if __name__ == "__main__":
    host = os.getenv("FLASK_HOST", "0.0.0.0")
    port = int(os.getenv("FLASK_PORT", "5000"))
    debug = os.getenv("ESCROWDESK_ENV", "dev") == "dev"

    app.run(host=host, port=port, debug=debug)
