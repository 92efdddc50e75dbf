# app/services/gcp_clients.py
import logging
import os
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials
from google.cloud import firestore

from app.core.config import settings

log = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_firestore_client() -> firestore.Client:
    return firestore.Client(project=settings.gcp_project)


@lru_cache(maxsize=1)
def get_firebase_app() -> firebase_admin.App:
    """Initialise the Admin SDK once (service account file if present, else ADC)."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    options = {"projectId": settings.gcp_project} if settings.gcp_project else None
    path = settings.gcp_credentials_path or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if path and os.path.exists(path):
        log.info("Firebase Admin SDK initialised with service account: %s", path)
        return firebase_admin.initialize_app(credentials.Certificate(path), options)
    log.info("Firebase Admin SDK initialised with Application Default Credentials")
    return firebase_admin.initialize_app(credentials.ApplicationDefault(), options)


def run_transaction(fn, *args, **kwargs):
    """Run `fn(txn, *args, **kwargs)` inside a retrying Firestore transaction."""
    db = get_firestore_client()
    return firestore.transactional(fn)(db.transaction(), *args, **kwargs)


def server_ts():  # Firestore server timestamp sentinel
    return firestore.SERVER_TIMESTAMP
