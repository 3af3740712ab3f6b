"""Local development server.

    python run.py

Serves the API on port 5001. For webhooks, forward Stripe events with:

    stripe listen --forward-to localhost:5001/stripe/webhook
"""

from dotenv import load_dotenv

load_dotenv()  # .env must be loaded before the config classes read os.environ

from app import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, port=5001)
