"""Output formatting for CLI commands."""

from typing import Dict, Optional

from cli.constants import BOLD, CYAN, GRAY, GREEN, RESET, STOP_HINT, YELLOW
from common.exceptions import ZapShareError
from common.types import TransferResult, TransferSession
from common.utils import format_duration, format_file_size, format_throughput


def format_share_info(session: TransferSession, info: Dict, tunnel_warning: Optional[str] = None) -> str:
    """
    Build the connection banner printed when sharing starts.

    Args:
        session: Started session
        info: Output of TransferSessionManager.share_info()
        tunnel_warning: Reason the global link is unavailable, if any

    Returns:
        Multi-line text with local and global connection details
    """
    lines = [
        f"{BOLD}Sharing:{RESET} {session.file_name} ({format_file_size(session.file_size)})",
        "",
        f"{CYAN}Local network{RESET}",
    ]
    for url in info.get('local_urls', []):
        lines.append(f"  Browser:       {url}")
    lines.append(f"  Command line:  {info.get('receive_command', '')}")

    if info.get('public_url'):
        lines += [
            "",
            f"{CYAN}Global link{RESET}",
            f"  Browser:       {info['public_url']}",
            f"  Command line:  {info.get('global_command', '')}",
        ]
    elif tunnel_warning:
        lines += ["", f"{YELLOW}Global link unavailable: {tunnel_warning}{RESET}",
                  f"{GRAY}Sharing on the local network only.{RESET}"]

    if session.password:
        lines += ["", f"{BOLD}Password:{RESET} {session.password}"]

    lines += ["", f"{GRAY}{STOP_HINT}{RESET}"]
    return "\n".join(lines)


def format_transfer_result(result: TransferResult) -> str:
    """
    Describe a completed receive.

    Returns:
        Text with save path, size, elapsed time and throughput
    """
    return (
        f"{GREEN}Received:{RESET} {result.file_name} ({format_file_size(result.file_size)})\n"
        f"Saved to: {result.save_path}\n"
        f"Time: {format_duration(result.elapsed_seconds)} "
        f"({format_throughput(result.file_size, result.elapsed_seconds)})"
    )


def format_error(error: ZapShareError) -> str:
    """Error message followed by its remediation hint, if any."""
    text = f"Error: {error}"
    if error.remediation:
        text += f"\n{YELLOW}Hint:{RESET} {error.remediation}"
    return text
