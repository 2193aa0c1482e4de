import pytest

from lmsdb.serve import uvicorn_options

PROD_ENV = {"SECRET_KEY": "s3cret"}


def test_defaults_run_a_single_worker_without_tls():
    options = uvicorn_options(PROD_ENV)

    assert options["workers"] == 1
    assert options["port"] == 8000
    assert options["reload"] is False
    assert "ssl_certfile" not in options


def test_placeholder_secret_only_allowed_with_reload():
    with pytest.raises(SystemExit):
        uvicorn_options({})

    assert uvicorn_options({"RELOAD": "true"})["reload"] is True


def test_reload_forces_single_worker():
    options = uvicorn_options({"RELOAD": "1", "WEB_CONCURRENCY": "4"})

    assert options["workers"] == 1


def test_workers_from_web_concurrency():
    assert uvicorn_options({**PROD_ENV, "WEB_CONCURRENCY": "3"})["workers"] == 3
    with pytest.raises(SystemExit):
        uvicorn_options({**PROD_ENV, "WEB_CONCURRENCY": "0"})


def test_tls_needs_both_cert_and_key():
    with pytest.raises(SystemExit):
        uvicorn_options({**PROD_ENV, "SSL_CERTFILE": "/etc/lms/cert.pem"})

    options = uvicorn_options(
        {**PROD_ENV, "SSL_CERTFILE": "/etc/lms/cert.pem", "SSL_KEYFILE": "/etc/lms/key.pem"}
    )
    assert options["ssl_certfile"] == "/etc/lms/cert.pem"
    assert options["ssl_keyfile"] == "/etc/lms/key.pem"
    assert "ssl_keyfile_password" not in options
