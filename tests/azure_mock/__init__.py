"""Azure fakes for testing without connectivity.

- MockCredential: token credential that can be told to fail
- MockTransport: scripted ``send_request`` client (ARM, Synapse)
- MockResourceGraphClient: Resource Graph with rows per resource type

Usage:
    from azure_mock import MockTransport, mock_response

    transport = MockTransport([
        mock_response(202, headers={"Location": "https://status/1"}),
        mock_response(200, {"status": "Succeeded"}),
    ])
    poller = AsyncOperationPoller(transport, sleep=lambda _: None)
"""

from .credential import MockCredential, create_mock_credential
from .graph import MockResourceGraphClient, create_mock_graph_client
from .transport import MockResponse, MockTransport, mock_response

__all__ = [
    "MockCredential",
    "MockResourceGraphClient",
    "MockResponse",
    "MockTransport",
    "create_mock_credential",
    "create_mock_graph_client",
    "mock_response",
]
