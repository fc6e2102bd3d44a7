"""Configuration model for a single subscribed feed."""

from pydantic import BaseModel, Field, field_validator


class FeedConfig(BaseModel):
    """Configuration for a single feed, seeded into the feed table at startup.

    Attributes:
        url: Feed source URL.
        title: Optional human-readable title.
        enabled: Whether the feed takes part in periodic refreshes.
    """

    url: str = Field(
        ...,
        min_length=1,
        description="Feed source URL (RSS or Atom).",
    )
    title: str | None = Field(
        default=None,
        description="Optional human-readable title for the feed.",
    )
    enabled: bool = Field(
        default=True,
        description="Whether the feed is enabled. If disabled, the feed will not be refreshed.",
    )

    @field_validator("url")
    @classmethod
    def validate_url_scheme(cls, v: str) -> str:
        """Require an http(s) URL.

        Raises:
            ValueError: If the URL does not use http or https.
        """
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"Feed url must start with http:// or https://, got '{v}'")
        return v
