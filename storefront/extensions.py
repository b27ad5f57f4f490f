from flask import current_app
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo

cors = CORS()
jwt = JWTManager()
mongo = PyMongo()


def get_db():
    return current_app.extensions["storefront"]["db"]


def get_storage():
    return current_app.extensions["storefront"]["storage"]


@jwt.unauthorized_loader
def missing_token_callback(reason: str):
    return {"message": "Unauthorized", "detail": reason}, 401


@jwt.invalid_token_loader
def invalid_token_callback(reason: str):
    return {"message": "Invalid token", "detail": reason}, 401


@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return {"message": "Token has expired"}, 401
