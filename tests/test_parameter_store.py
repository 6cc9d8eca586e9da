import pytest
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

import wagon_deploy.cross_region as cross_region
from wagon_deploy.cross_region import CrossRegionParameterReader
from wagon_deploy.errors import (
    ACCESS_DENIED,
    FAILED,
    NOT_FOUND,
    THROTTLED,
    TIMEOUT,
    ParameterStoreError,
    ResolutionError,
)
from wagon_deploy.model import ParameterRef
from wagon_deploy.parameters import ParameterStoreClient


def _client_error(code: str, op: str = "GetParameter") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class FakeSsm:
    def __init__(self, region: str, values: dict[str, str], error: Exception | None = None):
        self.region = region
        self.values = values
        self.error = error
        self.puts: list[dict] = []

    def get_parameter(self, **kwargs):
        assert kwargs["WithDecryption"] is True
        if self.error is not None:
            raise self.error
        name = kwargs["Name"]
        if name not in self.values:
            raise _client_error("ParameterNotFound")
        return {"Parameter": {"Name": name, "Value": self.values[name]}}

    def put_parameter(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.puts.append(kwargs)
        self.values[kwargs["Name"]] = kwargs["Value"]


class FakeSession:
    def __init__(self, clients: dict[str, FakeSsm]):
        self.clients = clients
        self.created: list[tuple[str, str]] = []

    def client(self, name, region_name=None, config=None):
        assert name == "ssm"
        assert config is not None
        self.created.append((name, region_name))
        return self.clients[region_name]


def test_get_reads_from_the_requested_region():
    session = FakeSession(
        {
            "us-east-1": FakeSsm("us-east-1", {"/wagon/prod/api-cert-arn": "arn:aws:acm:us-east-1:1:certificate/abc"}),
            "us-west-2": FakeSsm("us-west-2", {}),
        }
    )
    store = ParameterStoreClient(session)

    assert store.get("us-east-1", "/wagon/prod/api-cert-arn") == "arn:aws:acm:us-east-1:1:certificate/abc"
    assert store.get("us-east-1", "/wagon/prod/api-cert-arn").startswith("arn:")
    # One client per region, reused.
    assert session.created == [("ssm", "us-east-1")]


def test_put_writes_string_parameter_with_overwrite():
    ssm = FakeSsm("us-east-1", {})
    store = ParameterStoreClient(FakeSession({"us-east-1": ssm}))

    store.put("us-east-1", "/wagon/prod/api-cert-arn", "arn:cert")

    assert ssm.puts == [
        {"Name": "/wagon/prod/api-cert-arn", "Value": "arn:cert", "Type": "String", "Overwrite": True}
    ]


@pytest.mark.parametrize(
    "error,kind",
    [
        (_client_error("ParameterNotFound"), NOT_FOUND),
        (_client_error("AccessDeniedException"), ACCESS_DENIED),
        (_client_error("ThrottlingException"), THROTTLED),
        (_client_error("InternalServerError"), FAILED),
        (ReadTimeoutError(endpoint_url="https://ssm.us-east-1.amazonaws.com"), TIMEOUT),
        (ConnectTimeoutError(endpoint_url="https://ssm.us-east-1.amazonaws.com"), TIMEOUT),
        (EndpointConnectionError(endpoint_url="https://ssm.us-east-1.amazonaws.com"), TIMEOUT),
        (ConnectionClosedError(endpoint_url="https://ssm.us-east-1.amazonaws.com"), TIMEOUT),
        (NoCredentialsError(), ACCESS_DENIED),
        (PartialCredentialsError(provider="env", cred_var="AWS_SECRET_ACCESS_KEY"), ACCESS_DENIED),
        (BotoCoreError(), FAILED),
    ],
)
def test_errors_are_classified(error, kind):
    store = ParameterStoreClient(FakeSession({"us-east-1": FakeSsm("us-east-1", {}, error=error)}))

    with pytest.raises(ParameterStoreError) as exc:
        store.get("us-east-1", "/p")

    assert exc.value.kind == kind
    assert exc.value.region == "us-east-1"
    assert exc.value.name == "/p"


def test_put_access_denied_is_classified():
    store = ParameterStoreClient(
        FakeSession({"us-east-1": FakeSsm("us-east-1", {}, error=_client_error("AccessDenied", "PutParameter"))})
    )

    with pytest.raises(ParameterStoreError) as exc:
        store.put("us-east-1", "/p", "v")

    assert exc.value.kind == ACCESS_DENIED


class FlakySsm:
    def __init__(self, errors: list[Exception], value: str):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def get_parameter(self, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return {"Parameter": {"Name": kwargs["Name"], "Value": self.value}}


def test_connection_errors_are_retried_by_the_reader(monkeypatch):
    monkeypatch.setattr(cross_region, "_wait", lambda cancel, delay: False)
    ssm = FlakySsm(
        [
            EndpointConnectionError(endpoint_url="https://ssm.us-east-1.amazonaws.com"),
            ConnectionClosedError(endpoint_url="https://ssm.us-east-1.amazonaws.com"),
        ],
        "arn:cert",
    )
    reader = CrossRegionParameterReader(ParameterStoreClient(FakeSession({"us-east-1": ssm})))

    assert reader.resolve(ParameterRef("us-east-1", "/wagon/prod/api-cert-arn")) == "arn:cert"
    assert ssm.calls == 3


def test_missing_credentials_fail_the_read_without_retry(monkeypatch):
    monkeypatch.setattr(cross_region, "_wait", lambda cancel, delay: False)
    ssm = FlakySsm([NoCredentialsError()] * 3, "arn:cert")
    reader = CrossRegionParameterReader(ParameterStoreClient(FakeSession({"us-east-1": ssm})))

    with pytest.raises(ResolutionError) as exc:
        reader.resolve(ParameterRef("us-east-1", "/wagon/prod/api-cert-arn"))

    assert exc.value.kind == ACCESS_DENIED
    assert ssm.calls == 1
