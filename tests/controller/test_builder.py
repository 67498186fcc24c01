"""Unit tests for the resource builders (pure, no cluster)."""

from __future__ import annotations

from stok.controller.builder import (
    INSTALLER_CONTAINER,
    RUNNER_CONTAINER,
    build_config_map,
    build_pvc,
    build_run_pod,
    build_workspace_pod,
    render_backend_ini,
    render_backend_tf,
)
from stok.models import BackendSpec, CacheSpec, Container, ObjectMeta, Secret, Variable

IMAGE = "stok:test"


def _env(container: Container, name: str) -> str | None:
    return next((var.value for var in container.env if var.name == name), None)


# -- Backend -----------------------------------------------------------------


def test_backend_ini_sorted_by_key() -> None:
    rendered = render_backend_ini({"prefix": "dev", "bucket": "workspace-1-state"})
    assert rendered == 'bucket\t= "workspace-1-state"\nprefix\t= "dev"\n'


def test_backend_ini_empty_without_settings() -> None:
    assert render_backend_ini({}) == ""


def test_backend_tf_names_type() -> None:
    assert render_backend_tf("gcs") == 'terraform {\n  backend "gcs" {}\n}\n'


def test_backend_tf_empty_type_falls_back_to_local() -> None:
    assert render_backend_tf("") == 'terraform {\n  backend "local" {}\n}\n'


def test_config_map(make_workspace) -> None:
    ws = make_workspace(backend=BackendSpec(type="gcs", config={"bucket": "workspace-1-state", "prefix": "dev"}))
    config_map = build_config_map(ws)

    assert config_map.name == "workspace-ws-1"
    assert config_map.owned_by(ws)
    assert config_map.data["backend.tf"] == 'terraform {\n  backend "gcs" {}\n}\n'
    assert config_map.data["backend.ini"].splitlines() == ['bucket\t= "workspace-1-state"', 'prefix\t= "dev"']


def test_config_map_local_backend(make_workspace) -> None:
    config_map = build_config_map(make_workspace())
    assert config_map.data["backend.ini"] == ""
    assert 'backend "local"' in config_map.data["backend.tf"]


# -- Cache -------------------------------------------------------------------


def test_pvc_defaults(make_workspace) -> None:
    pvc = build_pvc(make_workspace())

    assert pvc.name == "workspace-ws-1"
    assert pvc.spec.resources.requests == {"storage": "1Gi"}
    assert pvc.spec.storage_class_name is None
    assert "storageClassName" not in pvc.to_dict()["spec"]


def test_pvc_explicit_empty_storage_class_is_kept(make_workspace) -> None:
    pvc = build_pvc(make_workspace(cache=CacheSpec(size="5Gi", storage_class="")))

    assert pvc.spec.resources.requests == {"storage": "5Gi"}
    assert pvc.to_dict()["spec"]["storageClassName"] == ""


def test_pvc_named_storage_class(make_workspace) -> None:
    pvc = build_pvc(make_workspace(cache=CacheSpec(storage_class="fast")))
    assert pvc.spec.storage_class_name == "fast"


# -- Pods --------------------------------------------------------------------


def test_workspace_pod_installer_args(make_workspace) -> None:
    pod = build_workspace_pod(make_workspace(timeout_client="30s"), IMAGE)
    installer = pod.container(INSTALLER_CONTAINER)

    assert pod.name == "workspace-ws-1"
    assert installer is not None
    assert installer.image == IMAGE
    assert installer.args == [
        "--kind",
        "Workspace",
        "--name",
        "ws-1",
        "--namespace",
        "default",
        "--timeout",
        "30s",
        "--",
        "-backend-config=backend.ini",
    ]
    assert [c.name for c in pod.spec.init_containers] == [INSTALLER_CONTAINER]
    assert pod.spec.restart_policy == "Never"


def test_workspace_pod_mounts_cache_and_backend(make_workspace) -> None:
    pod = build_workspace_pod(make_workspace(), IMAGE)
    mounts = {m.mount_path: m for m in pod.container(INSTALLER_CONTAINER).volume_mounts}

    assert mounts["/workspace/.terraform"].name == "cache"
    assert mounts["/workspace/backend.ini"].sub_path == "backend.ini"
    assert mounts["/workspace/backend.tf"].sub_path == "backend.tf"
    volumes = {v.name: v for v in pod.spec.volumes}
    assert volumes["cache"].persistent_volume_claim.claim_name == "workspace-ws-1"
    assert volumes["backend"].config_map.name == "workspace-ws-1"


def test_workspace_pod_secret_credentials(make_workspace) -> None:
    ws = make_workspace(secret_name="creds")
    secret = Secret(
        metadata=ObjectMeta(name="creds"),
        data={"google_application_credentials.json": "e30=", "AWS_ACCESS_KEY_ID": "a2V5"},
    )
    pod = build_workspace_pod(ws, IMAGE, secret)
    installer = pod.container(INSTALLER_CONTAINER)

    assert _env(installer, "GOOGLE_APPLICATION_CREDENTIALS") == "/credentials/google-credentials.json"
    assert [source.secret_ref.name for source in installer.env_from] == ["creds"]
    volumes = {v.name: v for v in pod.spec.volumes}
    assert volumes["credentials"].secret.secret_name == "creds"
    assert volumes["credentials"].secret.items[0].path == "google-credentials.json"


def test_workspace_pod_secret_without_google_key(make_workspace) -> None:
    secret = Secret(metadata=ObjectMeta(name="creds"), string_data={"TOKEN": "x"})
    pod = build_workspace_pod(make_workspace(secret_name="creds"), IMAGE, secret)
    installer = pod.container(INSTALLER_CONTAINER)

    assert _env(installer, "GOOGLE_APPLICATION_CREDENTIALS") is None
    assert installer.env_from[0].secret_ref.name == "creds"
    assert "credentials" not in {v.name for v in pod.spec.volumes}


def test_workspace_pod_without_secret(make_workspace) -> None:
    pod = build_workspace_pod(make_workspace(), IMAGE)
    assert pod.container(INSTALLER_CONTAINER).env_from == []


def test_workspace_pod_service_account(make_workspace) -> None:
    pod = build_workspace_pod(make_workspace(service_account_name="stok"), IMAGE)
    assert pod.spec.service_account_name == "stok"


def test_workspace_pod_environment(make_workspace) -> None:
    ws = make_workspace(
        variables=[
            Variable(key="region", value="eu"),
            Variable(key="TF_LOG", value="DEBUG", environment_variable=True),
        ],
        terraform_version="1.5.0",
        verbosity=2,
    )
    installer = build_workspace_pod(ws, IMAGE).container(INSTALLER_CONTAINER)

    assert _env(installer, "TF_VAR_region") == "eu"
    assert _env(installer, "TF_LOG") == "DEBUG"
    assert _env(installer, "TERRAFORM_VERSION") == "1.5.0"
    assert _env(installer, "STOK_VERBOSITY") == "2"


def test_run_pod(make_workspace, make_run) -> None:
    ws = make_workspace(service_account_name="stok")
    run = make_run("plan-1", command="apply")
    run.spec.args = ["-auto-approve"]
    pod = build_run_pod(ws, run, IMAGE)
    runner = pod.container(RUNNER_CONTAINER)

    assert pod.name == "run-plan-1"
    assert pod.owned_by(run)
    assert not pod.owned_by(ws)
    assert runner.args[:6] == ["--kind", "Run", "--name", "plan-1", "--namespace", "default"]
    assert runner.args[-3:] == ["--", "apply", "-auto-approve"]
    assert pod.spec.service_account_name == "stok"
