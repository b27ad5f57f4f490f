from datetime import datetime, timezone

from flask import Flask, jsonify, send_from_directory
from pymongo import ASCENDING, DESCENDING, TEXT

from . import auth, products
from .config import load_settings, validate_settings
from .errors import register_error_handlers
from .extensions import cors, jwt, mongo
from .storage import LocalBlobStorage, build_storage


def ensure_indexes(app, db) -> None:
    indexes = [
        (db.users, [("email", ASCENDING)], {"unique": True}),
        (db.products, [("name", TEXT), ("description", TEXT)], {}),
        (db.products, [("created_at", DESCENDING)], {}),
        (db.products, [("is_popular", ASCENDING)], {}),
        (db.products, [("sales_count", ASCENDING)], {}),
    ]
    if app.config.get("PRODUCT_NAME_UNIQUE"):
        indexes.append((db.products, [("name", ASCENDING)], {"unique": True}))

    for collection, keys, options in indexes:
        try:
            collection.create_index(keys, **options)
        except Exception as exc:
            app.logger.warning(
                "Unable to ensure index %s on %s: %s", keys, collection.name, exc
            )


def create_app(config=None, db=None, storage=None) -> Flask:
    """Create and configure the Flask application.

    ``db`` and ``storage`` replace the MongoDB database and the blob store
    built from the settings; ``config`` overrides individual settings.
    """
    app = Flask(__name__)
    app.config.update(load_settings())
    if config:
        app.config.update(config)
    validate_settings(app.config, database_injected=db is not None)

    # --- Initialize extensions ---
    cors.init_app(
        app,
        origins=app.config["CORS_ALLOWED_ORIGINS"],
        supports_credentials=True,
        allow_headers=["Authorization", "Content-Type"],
        methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    )
    jwt.init_app(app)

    if db is None:
        mongo.init_app(app)
        db = mongo.db if mongo.db is not None else mongo.cx[app.config["MONGO_DB_NAME"]]
    if storage is None:
        storage = build_storage(app)

    app.extensions["storefront"] = {"db": db, "storage": storage}
    ensure_indexes(app, db)

    register_error_handlers(app)
    app.register_blueprint(auth.bp)
    app.register_blueprint(products.bp)

    @app.route("/")
    def index():
        return jsonify({"message": "Storefront API is running"})

    @app.route("/api/health")
    def health():
        return jsonify(
            {"ok": True, "time": datetime.now(timezone.utc).isoformat()}
        )

    if isinstance(storage, LocalBlobStorage):

        @app.route("/uploads/<path:filename>")
        def serve_uploaded_file(filename: str):
            return send_from_directory(storage.folder, filename)

    return app
