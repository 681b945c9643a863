"""Hook configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Hook settings loaded from environment variables."""

    # Persisted handle records
    state_dir: str = "/run/lldp-hook"

    # Proxmox guest configuration
    pve_qemu_dir: str = "/etc/pve/qemu-server"
    pve_lxc_dir: str = "/etc/pve/lxc"
    migrate_inline_config: bool = True

    # Rule layout
    tc_prio_base: int = 18800  # rule priority is tc_prio_base + slot
    lldp_ethertype: str = "0x88cc"

    # Guest interface appearance (exponential backoff)
    interface_wait_timeout: float = 30.0
    interface_wait_initial: float = 0.25
    interface_wait_factor: float = 1.6
    interface_wait_max_delay: float = 2.0

    # Rule confirmation polling
    rule_confirm_timeout: float = 6.0
    rule_poll_interval: float = 0.25

    # Handle recovery after a create
    handle_capture_attempts: int = 5
    handle_capture_delay: float = 0.2

    # External commands
    command_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    log_file: str = ""  # Empty disables the file handler
    log_max_bytes: int = 1024 * 1024
    log_backup_count: int = 3
    syslog: bool = True

    # Behaviour
    dry_run: bool = False
    restart_lldpd: bool = False
    require_root: bool = True

    class Config:
        env_prefix = "LLDP_MIRROR_"


settings = Settings()
