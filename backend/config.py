from pathlib import Path
import os
import sys

# Bridge-visible servers directory (bind-mounted from host or a named volume)
SERVERS_ROOT = Path(os.environ.get("SERVERS_CONTAINER_ROOT", os.environ.get("CONTAINER_DATA_PATH", "/data/servers")))

# Be resilient: if creating the default path fails (e.g., running locally without permissions
# to create /data), fall back to a workspace-local directory.
try:
	SERVERS_ROOT.mkdir(parents=True, exist_ok=True)
except Exception as e:
	try:
		fallback = Path(os.environ.get("SERVERS_FALLBACK_ROOT", str(Path.cwd() / "servers_data")))
		fallback.mkdir(parents=True, exist_ok=True)
		print(f"WARN: Could not create {SERVERS_ROOT} ({e}); falling back to {fallback}")
		SERVERS_ROOT = fallback
	except Exception as e2:
		# Last resort: don't crash import, just leave as-is and hope downstream creates lazily
		print(f"ERROR: Failed to create servers root at {SERVERS_ROOT} and fallback: {e2}")

# Optional: absolute host path of the servers directory as the Docker daemon sees it.
# Host paths reported by `docker inspect` under this prefix are re-rooted onto SERVERS_ROOT.
SERVERS_HOST_ROOT = os.environ.get("SERVERS_HOST_ROOT", os.environ.get("HOST_DATA_PATH", ""))

# Set when the bridge's filesystem view differs from the Docker host's and no SERVERS_HOST_ROOT
# mapping applies: host paths are then matched onto SERVERS_ROOT by their leaf directory name.
BRIDGE_IN_CONTAINER = os.environ.get("BRIDGE_IN_CONTAINER", "").strip().lower() in {"1", "true", "yes"}

BACKUPS_ROOT = Path(os.environ.get("BACKUPS_ROOT", str(SERVERS_ROOT.parent / "backups")))
try:
	BACKUPS_ROOT.mkdir(parents=True, exist_ok=True)
except Exception as e:
	fallback = Path.cwd() / "backups_data"
	print(f"WARN: Could not create {BACKUPS_ROOT} ({e}); falling back to {fallback}")
	fallback.mkdir(parents=True, exist_ok=True)
	BACKUPS_ROOT = fallback

# Seconds to wait after stopping a container before its data directory is touched
RESTORE_SETTLE_SECONDS = float(os.environ.get("RESTORE_SETTLE_SECONDS", "2"))

# Console streaming: bounded chunk queue between the socket reader and the decoder
CONSOLE_QUEUE_SIZE = int(os.environ.get("CONSOLE_QUEUE_SIZE", "64"))
CONSOLE_READ_SIZE = int(os.environ.get("CONSOLE_READ_SIZE", "4096"))

# Path comparison mode for the data volume; defaults to the platform convention
_case_env = os.environ.get("CASE_INSENSITIVE_FS")
if _case_env is None:
	CASE_INSENSITIVE_FS = sys.platform in ("win32", "darwin")
else:
	CASE_INSENSITIVE_FS = _case_env.strip().lower() in {"1", "true", "yes"}

# Label written on every container this panel creates
MANAGED_LABEL_KEY = "created_by"
MANAGED_LABEL_VALUE = os.environ.get("MANAGED_LABEL_VALUE", "mc-admin")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Branding / application identity
APP_NAME = os.environ.get("APP_NAME", "BlockPanel Bridge")
APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
