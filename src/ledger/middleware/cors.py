"""CORS for browser clients of the transaction API."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledger.middleware.auth import API_KEY_HEADER
from ledger.middleware.logging import REQUEST_ID_HEADER


def configure_cors(app: FastAPI, allowed_origins: list[str]) -> None:
    """Allow the listed origins to read and mutate transactions.

    Only the headers clients actually send are allowed; the request id is
    exposed so a browser can quote it when reporting a failure.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", API_KEY_HEADER, REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )
