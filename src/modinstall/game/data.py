OWN_VERSION = "0.9.0"
DATE = "2026.10"

APP_NAME = "modinstall"
CONFIG_FILE_NAME = "modinstall.yaml"
STORE_FILE_NAME = "installed_packages.yaml"

# generated ini fragments are placed here, live configs are never touched
INI_TWEAKS_PATH = "Ini Tweaks"

STAGING_SUFFIX = ".installing"
INSTALLER_MANIFEST_NAME = "modinstall.yaml"
METADATA_SIDECAR_SUFFIX = ".meta.yaml"

# extraction errors containing any of these can't be fixed by retrying or skipping
CRITICAL_EXTRACTION_ERRORS = ("unexpected end of archive", "data error", "dangerous path")

SUPPORTED_ARCHIVES = (".zip", ".7z")

DEFAULT_PROFILE = "default"

BUSY_RETRY_DELAY = 0.1
