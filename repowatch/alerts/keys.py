"""Store keys for per-login alert state.

Every per-user value is namespaced by the GitHub login so several accounts can
share one store without colliding.
"""

ALERT_FREQUENCY_KEY = "alert_frequency"


def alerts_config_key(login: str) -> str:
    return f"alerts_config:{login}"


def last_checked_key(login: str) -> str:
    return f"last_checked:{login}"


def notifications_key(login: str) -> str:
    return f"notifications:{login}"


def tracked_files_key(login: str) -> str:
    return f"tracked_files:{login}"
