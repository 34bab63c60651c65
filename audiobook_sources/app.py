# File: audiobook_sources/app.py
"""Entry point for the application."""

from . import create_app

# Create the application instance using the factory.
# This global 'app' variable is what Gunicorn looks for by default.
app = create_app()

if __name__ == "__main__":  # pragma: no cover
    # Local Development Entry Point
    app.run(host=app.config["LISTEN_HOST"], port=app.config["LISTEN_PORT"])
