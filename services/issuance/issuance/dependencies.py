from fastapi import Request

from issuance.certificates.pdf_generator import TemplateRenderer
from issuance.config import Settings
from issuance.storage import BlobStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_renderer(request: Request) -> TemplateRenderer:
    return request.app.state.renderer


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
