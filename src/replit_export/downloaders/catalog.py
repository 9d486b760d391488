"""Replit catalog client.

Lists the authenticated user's Repls page by page and identifies the
account behind the session cookie. Pagination is cursor based: each page
returns an opaque `nextCursor` that is the only way to reach the next one,
so pages are fetched strictly in order and the cursor is what gets
checkpointed between runs.

Example usage:
    async with ReplCatalog(DownloaderConfig(session_cookie=sid)) as catalog:
        identity = await catalog.fetch_identity()
        catalog.reconcile_state(identity)

        while True:
            page = await catalog.fetch_next_page(15)
            if page.is_empty:
                break
            ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from replit_export.downloaders.base.base_downloader import (
    BaseDownloader,
    DownloaderConfig,
)
from replit_export.downloaders.base.protocol import ApiError, AuthenticationError
from replit_export.downloaders.progress.state import ExportState
from replit_export.models.repl import CurrentUser, ReplPage
from replit_export.utils.http_client import GraphQLResponse

if TYPE_CHECKING:
    from replit_export.downloaders.base.rate_limiter import RateLimitPolicy
    from replit_export.downloaders.base.retry_handler import RetryHandler
    from replit_export.utils.http_client import HTTPClient, HTTPResponse

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15

CURRENT_USER_QUERY = """query CurrentUser {
  currentUser {
    id
    username
  }
}
"""

EXPORT_REPLS_QUERY = """query ExportRepls($search: String!, $after: String, $count: Int) {
  currentUser {
    exportRepls: paginatedReplSearch(search: $search, after: $after, count: $count) {
      items {
        id
        title
        isPrivate
        slug
        wasPublished
        timeCreated
        timeUpdated
        user {
          id
          username
        }
        lang {
          id
          displayName
        }
        config {
          isServer
          isExtension
          gitRemoteUrl
          isVnc
          doClone
        }
        multiplayers {
          id
          username
        }
        source {
          release {
            id
            description
            hostedUrl
            user {
              id
              username
            }
          }
          deployment {
            id
            domain
          }
        }
        domains {
          domain
          state
          hosting_deployment_id
        }
        isAlwaysOn
        isBoosted
      }
      pageInfo {
        hasNextPage
        nextCursor
      }
    }
  }
}
"""


def parse_envelope(response: HTTPResponse, operation_name: str) -> GraphQLResponse:
    """Decode a GraphQL response body.

    Raises:
        ApiError: If the body is not a GraphQL envelope
    """
    try:
        return GraphQLResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise ApiError(
            f"{operation_name}: malformed response (status {response.status})",
            cause=e,
        ) from e


def current_user_data(envelope: GraphQLResponse) -> dict[str, Any]:
    """Return `data.currentUser`.

    Raises:
        AuthenticationError: If the response carries no user, which is how
            the API answers an invalid session cookie
    """
    user = (envelope.data or {}).get("currentUser")
    if not isinstance(user, dict):
        raise AuthenticationError()
    return user


class ReplCatalog(BaseDownloader):
    """Paginated listing of the authenticated user's Repls.

    The catalog owns the pagination part of the run state: every successful
    page fetch advances `state.cursor` and `state.has_next_page`.
    """

    def __init__(
        self,
        config: DownloaderConfig,
        *,
        state: ExportState | None = None,
        http_client: HTTPClient | None = None,
        rate_limit: RateLimitPolicy | None = None,
        retry_handler: RetryHandler | None = None,
    ) -> None:
        super().__init__(
            config,
            http_client=http_client,
            rate_limit=rate_limit,
            retry_handler=retry_handler,
        )
        self.state = state or ExportState()

    async def fetch_identity(self) -> int:
        """Return the id of the account behind the session cookie.

        Raises:
            AuthenticationError: If the session cookie is invalid
            ApiError: If the API answers with an error envelope
        """
        response = await self._graphql("CurrentUser", {}, CURRENT_USER_QUERY)
        envelope = parse_envelope(response, "CurrentUser")

        if envelope.has_errors and not envelope.data:
            raise ApiError("Cannot fetch current user", errors=envelope.errors)

        try:
            user = CurrentUser.model_validate(current_user_data(envelope))
        except ValidationError as e:
            raise ApiError("CurrentUser: unexpected user shape", cause=e) from e

        logger.debug("Authenticated as %s (%d)", user.username, user.id)
        return user.id

    def reconcile_state(self, identity: int) -> ExportState:
        """Bind the run state to `identity`.

        A cursor saved for another account is discarded and the listing
        restarts from the beginning.
        """
        stale = self.state.user is not None or self.state.cursor is not None
        if stale and not self.state.matches(identity):
            logger.warning(
                "Ignoring savefile, user mismatch (%s != %s)",
                self.state.user,
                identity,
            )
        self.state = self.state.for_identity(identity)
        return self.state

    async def fetch_next_page(self, count: int = DEFAULT_PAGE_SIZE) -> ReplPage:
        """Fetch the page following the held cursor.

        Args:
            count: Page size requested from the API

        Returns:
            The page; an empty page means the listing is exhausted

        Raises:
            ApiError: If the API answers with an error envelope
            AuthenticationError: If the session cookie is invalid
        """
        if count < 1:
            raise ValueError("count must be positive")

        variables = {"search": "", "after": self.state.cursor, "count": count}
        response = await self._graphql("ExportRepls", variables, EXPORT_REPLS_QUERY)
        envelope = parse_envelope(response, "ExportRepls")

        if envelope.has_errors:
            raise ApiError("Cannot fetch user repls", errors=envelope.errors)

        user = current_user_data(envelope)
        listing = user.get("exportRepls")
        if listing is None:
            page = ReplPage()
        else:
            try:
                page = ReplPage.model_validate(listing)
            except ValidationError as e:
                raise ApiError("ExportRepls: unexpected listing shape", cause=e) from e

        # An empty last page keeps the cursor of the page before it.
        if not page.is_empty or page.page_info.next_cursor is not None:
            self.state.cursor = page.page_info.next_cursor
        self.state.has_next_page = page.page_info.has_next_page
        logger.debug(
            "Fetched %d repls (has_next_page=%s)",
            len(page),
            page.page_info.has_next_page,
        )
        return page
