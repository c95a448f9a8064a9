from __future__ import annotations


class LinkServiceError(Exception):
    """Base class for failures a caller can act on."""


class LinkValidationError(LinkServiceError):
    """Rejected before any write happened."""


class InvalidLinkInputError(LinkValidationError):
    pass


class LinkNotFoundError(LinkServiceError):
    def __init__(self, link_id: int) -> None:
        super().__init__(f"Link not found: {link_id}")
        self.link_id = link_id
