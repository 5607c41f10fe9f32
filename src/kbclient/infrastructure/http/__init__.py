"""Authenticated HTTP access to the backend.

ApiClient lives in kbclient.infrastructure.http.api_client; it is not re-exported here
because it depends on the session layer, which itself imports errors from this package.
"""

from kbclient.infrastructure.http.pipeline import Outcome, RequestContext, RequestPipeline

__all__ = ["Outcome", "RequestContext", "RequestPipeline"]
