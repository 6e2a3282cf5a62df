import logging
from typing import Optional
from flask import Flask
from auth import TokenAuthority
from config import SECRET_KEY, SEED_PATH
from service import RecommendationService
from stores import load_seed
from routes import register_routes

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(service: Optional[RecommendationService] = None, secret_key: str = SECRET_KEY) -> Flask:
    """Build the Flask app around a recommendation service"""
    if service is None:
        if SEED_PATH:
            catalog, orders, users = load_seed(SEED_PATH)
            service = RecommendationService(catalog, orders, users)
        else:
            logger.warning("RECOMMENDER_SEED_PATH not set, starting with empty stores")
            service = RecommendationService()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = secret_key
    app.extensions["recommender"] = service
    app.extensions["token_authority"] = TokenAuthority(service.users, secret_key=secret_key)

    register_routes(app, service, app.extensions["token_authority"])
    return app


def main():
    """Main function - run as Flask API server"""
    app = create_app()
    service = app.extensions["recommender"]
    service.start()
    try:
        app.run(host="0.0.0.0", port=8000, debug=False)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
