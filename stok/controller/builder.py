"""Desired state of a workspace's dependent resources.

Pure functions: given a workspace (and, where relevant, the secret it
references) they return the config map, cache claim and pods the controller
should create.  Nothing here touches the cluster.

Naming is deterministic (``workspace-<name>`` for everything owned by a
workspace, ``run-<name>`` for a run's pod) so the reconciler can check
existence with a plain ``get``.
"""

from __future__ import annotations

from collections.abc import Mapping

import jinja2

from stok.models import (
    DEFAULT_CACHE_SIZE,
    WORKSPACE_LABEL,
    ConfigMap,
    ConfigMapVolumeSource,
    Container,
    EnvFromSource,
    EnvVar,
    KeyToPath,
    ObjectMeta,
    PersistentVolumeClaim,
    PersistentVolumeClaimSpec,
    PersistentVolumeClaimVolumeSource,
    Pod,
    PodSpec,
    ResourceRequirements,
    Run,
    Secret,
    SecretEnvSource,
    SecretVolumeSource,
    Volume,
    VolumeMount,
    Workspace,
    owner_reference,
    workspace_resource_name,
)

WORKING_DIR = "/workspace"
CACHE_MOUNT_PATH = f"{WORKING_DIR}/.terraform"
CREDENTIALS_MOUNT_PATH = "/credentials"

BACKEND_TF = "backend.tf"
BACKEND_INI = "backend.ini"

INSTALLER_CONTAINER = "installer"
IDLE_CONTAINER = "idle"
RUNNER_CONTAINER = "runner"

GOOGLE_CREDENTIALS_KEY = "google_application_credentials.json"
GOOGLE_CREDENTIALS_FILE = "google-credentials.json"

_BACKEND_TEMPLATE = jinja2.Environment(autoescape=False, keep_trailing_newline=True).from_string(  # noqa: S701
    'terraform {\n  backend "{{ backend_type }}" {}\n}\n'
)


def workspace_labels(workspace: Workspace, component: str = "workspace") -> dict[str, str]:
    return {
        "app": "stok",
        "component": component,
        WORKSPACE_LABEL: workspace.name,
    }


# -- Backend configuration ---------------------------------------------------


def render_backend_tf(backend_type: str) -> str:
    """The ``terraform { backend ... }`` block; an empty type falls back to ``local``."""
    return _BACKEND_TEMPLATE.render(backend_type=backend_type or "local")


def render_backend_ini(config: Mapping[str, str]) -> str:
    """One ``key<TAB>= "value"`` line per setting, sorted by key."""
    return "".join(f'{key}\t= "{config[key]}"\n' for key in sorted(config))


def build_config_map(workspace: Workspace) -> ConfigMap:
    backend = workspace.spec.backend
    return ConfigMap(
        metadata=ObjectMeta(
            name=workspace_resource_name(workspace.name),
            namespace=workspace.namespace,
            labels=workspace_labels(workspace),
            owner_references=[owner_reference(workspace)],
        ),
        data={
            BACKEND_TF: render_backend_tf(backend.type),
            BACKEND_INI: render_backend_ini(backend.config),
        },
    )


# -- Cache -------------------------------------------------------------------


def build_pvc(workspace: Workspace) -> PersistentVolumeClaim:
    """Cache claim.  ``storage_class`` is copied as-is: ``None`` and ``""`` mean different things."""
    cache = workspace.spec.cache
    return PersistentVolumeClaim(
        metadata=ObjectMeta(
            name=workspace_resource_name(workspace.name),
            namespace=workspace.namespace,
            labels=workspace_labels(workspace),
            owner_references=[owner_reference(workspace)],
        ),
        spec=PersistentVolumeClaimSpec(
            resources=ResourceRequirements(requests={"storage": cache.size or DEFAULT_CACHE_SIZE}),
            storage_class_name=cache.storage_class,
        ),
    )


# -- Pods --------------------------------------------------------------------


def runner_args(kind: str, name: str, namespace: str, timeout: str, *tool_args: str) -> list[str]:
    """Argument contract understood by the runner inside the pod."""
    return ["--kind", kind, "--name", name, "--namespace", namespace, "--timeout", timeout, "--", *tool_args]


def _environment(workspace: Workspace, secret: Secret | None) -> tuple[list[EnvVar], list[EnvFromSource]]:
    env: list[EnvVar] = []
    env_from: list[EnvFromSource] = []

    if secret is not None:
        env_from.append(EnvFromSource(secret_ref=SecretEnvSource(name=secret.name)))
        if GOOGLE_CREDENTIALS_KEY in secret.keys:
            env.append(
                EnvVar(
                    name="GOOGLE_APPLICATION_CREDENTIALS",
                    value=f"{CREDENTIALS_MOUNT_PATH}/{GOOGLE_CREDENTIALS_FILE}",
                )
            )

    for variable in workspace.spec.variables:
        name = variable.key if variable.environment_variable else f"TF_VAR_{variable.key}"
        env.append(EnvVar(name=name, value=variable.value))

    if workspace.spec.terraform_version:
        env.append(EnvVar(name="TERRAFORM_VERSION", value=workspace.spec.terraform_version))
    if workspace.spec.verbosity > 0:
        env.append(EnvVar(name="STOK_VERBOSITY", value=str(workspace.spec.verbosity)))

    return env, env_from


def _volumes(workspace: Workspace, secret: Secret | None) -> tuple[list[Volume], list[VolumeMount]]:
    resource_name = workspace_resource_name(workspace.name)
    volumes = [
        Volume(name="cache", persistent_volume_claim=PersistentVolumeClaimVolumeSource(claim_name=resource_name)),
        Volume(name="backend", config_map=ConfigMapVolumeSource(name=resource_name)),
    ]
    mounts = [
        VolumeMount(name="cache", mount_path=CACHE_MOUNT_PATH),
        VolumeMount(name="backend", mount_path=f"{WORKING_DIR}/{BACKEND_TF}", sub_path=BACKEND_TF),
        VolumeMount(name="backend", mount_path=f"{WORKING_DIR}/{BACKEND_INI}", sub_path=BACKEND_INI),
    ]
    if secret is not None and GOOGLE_CREDENTIALS_KEY in secret.keys:
        volumes.append(
            Volume(
                name="credentials",
                secret=SecretVolumeSource(
                    secret_name=secret.name,
                    items=[KeyToPath(key=GOOGLE_CREDENTIALS_KEY, path=GOOGLE_CREDENTIALS_FILE)],
                ),
            )
        )
        mounts.append(VolumeMount(name="credentials", mount_path=CREDENTIALS_MOUNT_PATH))
    return volumes, mounts


def build_workspace_pod(workspace: Workspace, image: str, secret: Secret | None = None) -> Pod:
    """The workspace pod: an installer init container, then an idle container.

    The installer waits for the client, runs ``terraform init`` against the
    generated backend config and exits; its output is what ``workspace new``
    streams back.  The idle container keeps the pod (and the cache) around.
    """
    env, env_from = _environment(workspace, secret)
    volumes, mounts = _volumes(workspace, secret)

    installer = Container(
        name=INSTALLER_CONTAINER,
        image=image,
        args=runner_args(
            "Workspace",
            workspace.name,
            workspace.namespace,
            workspace.spec.timeout_client,
            f"-backend-config={BACKEND_INI}",
        ),
        working_dir=WORKING_DIR,
        env=env,
        env_from=env_from,
        volume_mounts=mounts,
    )
    idle = Container(
        name=IDLE_CONTAINER,
        image=image,
        command=["sh", "-c", "trap 'exit 0' TERM; while true; do sleep 1; done"],
        working_dir=WORKING_DIR,
        env=env,
        env_from=env_from,
        volume_mounts=mounts,
    )

    return Pod(
        metadata=ObjectMeta(
            name=workspace.pod_name,
            namespace=workspace.namespace,
            labels=workspace_labels(workspace),
            owner_references=[owner_reference(workspace)],
        ),
        spec=PodSpec(
            service_account_name=workspace.spec.service_account_name,
            init_containers=[installer],
            containers=[idle],
            volumes=volumes,
        ),
    )


def build_run_pod(workspace: Workspace, run: Run, image: str, secret: Secret | None = None) -> Pod:
    """Pod executing ``terraform <command> <args...>`` for one run, owned by the run."""
    env, env_from = _environment(workspace, secret)
    volumes, mounts = _volumes(workspace, secret)

    runner = Container(
        name=RUNNER_CONTAINER,
        image=image,
        args=runner_args(
            "Run",
            run.name,
            run.namespace,
            workspace.spec.timeout_client,
            run.spec.command,
            *run.spec.args,
        ),
        working_dir=WORKING_DIR,
        env=env,
        env_from=env_from,
        volume_mounts=mounts,
    )

    return Pod(
        metadata=ObjectMeta(
            name=run.pod_name,
            namespace=run.namespace,
            labels=workspace_labels(workspace, component="run"),
            owner_references=[owner_reference(run)],
        ),
        spec=PodSpec(
            service_account_name=workspace.spec.service_account_name,
            containers=[runner],
            volumes=volumes,
        ),
    )
