"""Typed records for the Replit GraphQL responses.

Every response shape the exporter consumes is declared here so missing or
mistyped fields are rejected at the API boundary instead of surfacing
later as attribute errors. Field names follow Python conventions; the
GraphQL camelCase names are kept as aliases, and `model_dump(by_alias=True)`
reproduces the API shape (this is what the metadata sidecar contains).

Example usage:
    page = ReplPage.model_validate(data["currentUser"]["exportRepls"])
    for repl in page.items:
        print(repl.owner_username, repl.slug)
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for API records: immutable, camelCase aliases, extra fields ignored."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class ReplOwner(ApiModel):
    """User owning a Repl."""

    id: int
    username: str


class ReplConfig(ApiModel):
    """Capability flags of a Repl."""

    is_server: bool = False
    is_extension: bool = False
    git_remote_url: str | None = None
    is_vnc: bool = False
    do_clone: bool = False


class Multiplayer(ApiModel):
    """Collaborator invited to a Repl."""

    id: int
    username: str


class ReplDomain(ApiModel):
    """Custom domain attached to a Repl."""

    domain: str
    state: str | None = None
    # Replit returns this field in snake_case.
    hosting_deployment_id: str | None = Field(
        default=None, alias="hosting_deployment_id"
    )


class ReplRelease(ApiModel):
    id: str
    description: str | None = None
    hosted_url: str | None = None
    user: ReplOwner | None = None


class ReplDeployment(ApiModel):
    id: str
    domain: str | None = None


class ReplSource(ApiModel):
    """Template or deployment a Repl was created from."""

    release: ReplRelease | None = None
    deployment: ReplDeployment | None = None


class ReplLanguage(ApiModel):
    id: str
    display_name: str | None = None


class Repl(ApiModel):
    """One exportable Repl."""

    id: str
    title: str
    slug: str
    is_private: bool = False
    was_published: bool = False
    time_created: str | None = None
    time_updated: str | None = None
    user: ReplOwner | None = None
    lang: ReplLanguage | None = None
    config: ReplConfig | None = None
    multiplayers: list[Multiplayer] = Field(default_factory=list)
    domains: list[ReplDomain] = Field(default_factory=list)
    source: ReplSource | None = None
    is_always_on: bool = False
    is_boosted: bool = False

    @property
    def owner_username(self) -> str | None:
        return self.user.username if self.user else None

    @property
    def language(self) -> str | None:
        return self.lang.id if self.lang else None

    @property
    def display_name(self) -> str:
        """`@owner/slug`, or the bare slug when the owner is unknown."""
        if self.owner_username:
            return f"@{self.owner_username}/{self.slug}"
        return self.slug


class PageInfo(ApiModel):
    """Continuation state of a paginated listing."""

    has_next_page: bool = False
    next_cursor: str | None = None


class ReplPage(ApiModel):
    """One page of the Repl listing."""

    items: list[Repl] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items


class CurrentUser(ApiModel):
    """Authenticated account."""

    id: int
    username: str | None = None
