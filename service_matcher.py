"""Resolve a customer's service text against a parlour's catalog."""

from typing import Optional, Sequence

from schemas import Service


def match_service(service_text: str, catalog: Sequence[Service]) -> Optional[Service]:
    """
    Exact (case-insensitive) name match first; otherwise the first service, in
    catalog order, whose name contains the text.
    """
    wanted = (service_text or "").strip().lower()
    if not wanted:
        return None

    for service in catalog:
        if service.name.strip().lower() == wanted:
            return service

    for service in catalog:
        if wanted in service.name.lower():
            return service

    return None


def catalog_names(catalog: Sequence[Service]) -> str:
    return ", ".join(service.name for service in catalog) or "None"
