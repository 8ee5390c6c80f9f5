"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the workflow
gateway and the authenticated actor. The WorkflowContext itself lives on
``app.state`` and is built by the lifespan (or injected by tests).
"""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from visa_escrow.domain.collaborators import Actor, Authorizer
from visa_escrow.domain.exceptions import NotAuthenticatedError
from visa_escrow.services.context import WorkflowContext
from visa_escrow.services.gateway import WorkflowGateway

_bearer = HTTPBearer(auto_error=False)


def get_context(request: Request) -> WorkflowContext:
    """Provide the application's workflow context."""
    return request.app.state.context


def get_gateway(context: WorkflowContext = Depends(get_context)) -> WorkflowGateway:
    """Provide a WorkflowGateway bound to the application context."""
    return WorkflowGateway(context)


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    authorizer: Authorizer = Depends(get_authorizer),
) -> Actor:
    """Resolve the bearer token to the calling actor."""
    if credentials is None:
        raise NotAuthenticatedError("Missing bearer token")
    return authorizer.resolve(credentials.credentials)
