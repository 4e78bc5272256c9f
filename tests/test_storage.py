import boto3
import pytest
from botocore.client import Config
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from storage import LocalFileStorage, S3FileStorage, StorageError, build_storage


@pytest.fixture
def local(tmp_path):
    return LocalFileStorage(str(tmp_path / "files"))


def test_local_save_open_delete(local):
    stored = local.save("CLT-1-AAAAAA", "notes-1-abc.txt", b"hello", "text/plain")
    assert stored.provider == "local"
    assert stored.path == "CLT-1-AAAAAA/notes-1-abc.txt"
    assert stored.size == 5
    assert local.exists(stored.path)

    with open(local.open(stored.path), "rb") as handle:
        assert handle.read() == b"hello"

    assert local.delete(stored.path) is True
    assert local.delete(stored.path) is False
    with pytest.raises(FileNotFoundError):
        local.open(stored.path)


def test_local_delete_prefix_only_touches_one_client(local):
    local.save("CLT-1-AAAAAA", "a.txt", b"a", "text/plain")
    local.save("CLT-1-AAAAAA", "b.txt", b"b", "text/plain")
    local.save("CLT-2-BBBBBB", "c.txt", b"c", "text/plain")

    assert local.delete_prefix("CLT-1-AAAAAA") == 2
    assert local.list_keys() == ["CLT-2-BBBBBB/c.txt"]
    assert local.delete_prefix("CLT-1-AAAAAA") == 0


def test_local_rejects_paths_outside_the_root(local):
    with pytest.raises(StorageError):
        local.open("../../etc/passwd")
    with pytest.raises(StorageError):
        local.save("..", "escape.txt", b"x", "text/plain")
    assert local.exists("../outside.txt") is False
    assert local.delete("../outside.txt") is False


def test_build_storage_requires_a_bucket_for_s3(tmp_path):
    with pytest.raises(RuntimeError):
        build_storage({"STORAGE_BACKEND": "s3"})
    assert isinstance(build_storage({"UPLOAD_DIR": str(tmp_path)}), LocalFileStorage)


@pytest.fixture
def s3():
    client = boto3.client("s3", region_name="us-east-1",
                          aws_access_key_id="testing", aws_secret_access_key="testing",
                          config=Config(signature_version="s3v4"))
    storage = S3FileStorage(bucket="portal-files", client=client)
    with Stubber(client) as stubber:
        yield storage, stubber
        stubber.assert_no_pending_responses()


def test_s3_save_puts_an_encrypted_object(s3):
    storage, stubber = s3
    stubber.add_response("put_object", {"ETag": '"abc"'}, {
        "Bucket": "portal-files",
        "Key": "client-files/CLT-1-AAAAAA/leads-1-abc.csv",
        "Body": ANY,
        "ContentType": "text/csv",
        "ServerSideEncryption": "AES256",
        "Metadata": {"client-id": "CLT-1-AAAAAA"},
    })

    stored = storage.save("CLT-1-AAAAAA", "leads-1-abc.csv", b"a,b\n", "text/csv")
    assert stored.provider == "s3"
    assert stored.path == "client-files/CLT-1-AAAAAA/leads-1-abc.csv"
    assert stored.url == "s3://portal-files/client-files/CLT-1-AAAAAA/leads-1-abc.csv"
    assert stored.size == 4


def test_s3_save_failure_is_a_storage_error(s3):
    storage, stubber = s3
    stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
    with pytest.raises(StorageError) as excinfo:
        storage.save("CLT-1-AAAAAA", "a.txt", b"a", "text/plain")
    assert excinfo.value.code == "STORAGE_ERROR"


def test_s3_exists(s3):
    storage, stubber = s3
    stubber.add_response("head_object", {"ContentLength": 1}, {"Bucket": "portal-files", "Key": "k1"})
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
    assert storage.exists("k1") is True
    assert storage.exists("k2") is False


def test_s3_signed_url_carries_the_download_name(s3):
    storage, _ = s3
    url = storage.signed_url("client-files/CLT-1-AAAAAA/a.pdf", download_name="report.pdf", inline=True)
    assert "portal-files" in url
    assert "client-files/CLT-1-AAAAAA/a.pdf" in url
    assert "response-content-disposition=inline" in url
    assert "X-Amz-Expires=900" in url


def test_s3_delete_prefix_and_list(s3):
    storage, stubber = s3
    keys = ["client-files/CLT-1-AAAAAA/a.txt", "client-files/CLT-1-AAAAAA/b.txt"]
    stubber.add_response(
        "list_objects_v2",
        {"Contents": [{"Key": k} for k in keys], "IsTruncated": False},
        {"Bucket": "portal-files", "Prefix": "client-files/CLT-1-AAAAAA/"},
    )
    stubber.add_response(
        "delete_objects",
        {"Deleted": [{"Key": k} for k in keys]},
        {"Bucket": "portal-files", "Delete": {"Objects": [{"Key": k} for k in keys], "Quiet": True}},
    )
    stubber.add_response(
        "list_objects_v2",
        {"Contents": [{"Key": "client-files/CLT-2-BBBBBB/c.txt"}], "IsTruncated": False},
        {"Bucket": "portal-files", "Prefix": "client-files/"},
    )

    assert storage.delete_prefix("CLT-1-AAAAAA") == 2
    assert storage.list_keys() == ["client-files/CLT-2-BBBBBB/c.txt"]


def test_s3_delete_failure_is_reported_not_raised(s3):
    storage, stubber = s3
    stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
    assert storage.delete("client-files/x") is False


class UnreachableS3:
    def head_object(self, **kwargs):
        raise EndpointConnectionError(endpoint_url="https://s3.example.invalid")


def test_s3_exists_is_false_when_the_endpoint_is_unreachable():
    storage = S3FileStorage(bucket="portal-files", client=UnreachableS3())
    assert storage.exists("client-files/CLT-1-AAAAAA/a.txt") is False
