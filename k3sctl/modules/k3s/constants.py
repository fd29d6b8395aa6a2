"""K3s installation constants shared by the orchestrator and health checks."""

DOWNLOAD_URL = "https://get.k3s.io"
SERVER_PORT = 6443

SERVER_FLAGS = "--cluster-init --disable traefik --disable servicelb --disable local-storage"
ADDITIONAL_SERVER_FLAGS = "--disable traefik --disable servicelb --disable local-storage"

TOKEN_FILE_PATH = "/var/lib/rancher/k3s/server/node-token"
KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"
LOCALHOST_IP = "127.0.0.1"

UNINSTALL_SERVER_CMD = (
    "if [ -x /usr/local/bin/k3s-uninstall.sh ]; then "
    "sudo systemctl stop k3s || true; sudo /usr/local/bin/k3s-uninstall.sh; fi"
)
UNINSTALL_AGENT_CMD = (
    "if [ -x /usr/local/bin/k3s-agent-uninstall.sh ]; then "
    "sudo systemctl stop k3s-agent || true; sudo /usr/local/bin/k3s-agent-uninstall.sh; fi"
)

# VM id blocks reserved per role
DEFAULT_ID_BLOCK_SIZE = 10

DEFAULT_NAME_PREFIX = "cluster"

# Default resource profile (cores, MiB, GiB, GiB)
DEFAULT_CORES = 2
DEFAULT_MEMORY = 2048
DEFAULT_OS_DISK_SIZE = 20
DEFAULT_DATA_DISK_SIZE = 60


def server_url(address: str) -> str:
    """Return the K3s API endpoint for a control-plane address."""
    return f"https://{address}:{SERVER_PORT}"


def primary_install_script() -> str:
    return f"curl -sfL {DOWNLOAD_URL} | sh -s - server {SERVER_FLAGS}"


def secondary_install_script(primary_address: str, token: str) -> str:
    return (
        f"curl -sfL {DOWNLOAD_URL} | K3S_TOKEN={token} sh -s - server "
        f"--server {server_url(primary_address)} {ADDITIONAL_SERVER_FLAGS}"
    )


def worker_install_script(primary_address: str, token: str) -> str:
    return (
        f"curl -sfL {DOWNLOAD_URL} | "
        f"K3S_URL={server_url(primary_address)} K3S_TOKEN={token} sh -"
    )


def read_file_script(path: str) -> str:
    return f"sudo cat {path}"
