"""CLI constants: colors, banner and prompt style."""

from prompt_toolkit.styles import Style

PROG_NAME = "zapshare"

STYLE = Style.from_dict(
    {
        "prompt": "#F45935 bold",
        "hint": "#888888 italic",
    }
)

RED_ORANGE = "\033[38;2;244;89;53m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
GRAY = "\033[90m"
BOLD = "\033[1m"
RESET = "\033[0m"

LOGO = f"""{RED_ORANGE}
 =====  ===  ====   ====  =   =   ===   ====   =====
    =  =   = =   = =      =   =  =   =  =   =  =
   =   ===== ====   ===   =====  =====  ====   ====
  =    =   = =         =  =   =  =   =  =  =   =
 ===== =   = =     ====   =   =  =   =  =   =  =====
{RESET}"""

DESCRIPTION = "Share a file with another device over the local network or a global link."

EPILOG = """Examples:
  zapshare send report.pdf
  zapshare send report.pdf --secure
  zapshare receive 192.168.1.20 49152
  zapshare get https://tinyurl.com/abc123 report.pdf --password K3X9QZ
  zapshare tunnels
  zapshare tunnels-close"""

PASSWORD_PROMPT_TEXT = "Password: "
STOP_HINT = "Press Ctrl+C to stop sharing."

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130
