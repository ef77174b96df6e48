from numbers import Real
from typing import Any, Dict, Optional


class BookValidator:
    """Payload checks applied before a book reaches storage."""

    TEXT_FIELDS = ("name", "author", "publisher")

    @staticmethod
    def is_positive_price(price: Any) -> bool:
        # bool is a Real subclass; True is not a price
        if isinstance(price, bool) or not isinstance(price, Real):
            return False
        return price > 0

    @staticmethod
    def _is_defined_text(value: Optional[Any]) -> bool:
        return isinstance(value, str)

    @staticmethod
    def validate_name(name: Optional[Any]) -> bool:
        return isinstance(name, str) and bool(name.strip())

    @staticmethod
    def is_valid(payload: Dict[str, Any]) -> bool:
        """Full check used when creating a book.

        name, author and publisher must be present strings (the name also
        non-blank) and the price strictly positive.
        """
        if not isinstance(payload, dict):
            return False
        return (
            BookValidator.validate_name(payload.get("name"))
            and BookValidator._is_defined_text(payload.get("author"))
            and BookValidator._is_defined_text(payload.get("publisher"))
            and BookValidator.is_positive_price(payload.get("price"))
        )

    @staticmethod
    def is_partially_valid(payload: Dict[str, Any]) -> bool:
        """At least one of name/author/publisher given, or a positive price."""
        if not isinstance(payload, dict):
            return False
        if any(payload.get(field) is not None for field in BookValidator.TEXT_FIELDS):
            return True
        return BookValidator.is_positive_price(payload.get("price"))
