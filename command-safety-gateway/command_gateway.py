"""Command Safety Gateway — decides whether user input may become an OS process.

Public API:
    gateway = CommandGateway(session_id="term_001")
    verdict = gateway.check_command_safety("git status")
    result = gateway.execute_shell("git status")
    output = gateway.run_tool_command(["status"])

Two request shapes, one validator each:
    StructuredCommand(args)  -> validate_tool_args     -> tool spawned with an argument list
    RawLineCommand(text)     -> check_command_safety   -> line handed to the platform shell

Shell validation order: Dangerous patterns -> Shell operators -> Prefix allowlist.
"""

import json
import subprocess
import sys
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from gateway_settings import AppSettings, SettingsService, get_settings_service


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TOOL_EXECUTABLE = "truthgit"
DEFAULT_AUDIT_DIR = "./audit"

KIND_SHELL = "shell"
KIND_TOOL = "tool"

# Reported when the process ended without an exit status (killed by a signal)
NO_EXIT_CODE = -1

# Redirect to the null device; its presence skips the dangerous-pattern scan
NULL_DEVICE_EXCEPTION = "> /dev/null"


# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

ALLOWED_TOOL_SUBCOMMANDS = (
    "status",
    "verify",
    "safe-verify",
    "prove",
    "search",
    "log",
    "show",
    "list",
    "version",
    "--version",
    "--help",
    "help",
)

FORBIDDEN_ARG_PATTERNS = (
    ";",
    "&&",
    "||",
    "|",
    "`",
    "$(",
    "${",
    ">",
    "<",
    "\n",
    "\r",
)

# Trailing spaces keep "cat " from matching "category"
ALLOWED_COMMAND_PREFIXES = (
    "truthgit",
    "ls",
    "pwd",
    "cat ",
    "head ",
    "tail ",
    "grep ",
    "find ",
    "echo ",
    "cd ",
    "git status",
    "git log",
    "git diff",
    "git branch",
    "git show",
    "pip list",
    "pip show",
    "python --version",
    "node --version",
    "npm list",
    "cargo --version",
    "rustc --version",
    "which ",
    "whereis ",
    "file ",
    "wc ",
    "date",
    "whoami",
    "hostname",
    "uname",
    "env",
    "printenv",
)

# Matched against the lower-cased command
DANGEROUS_PATTERNS = (
    "rm -rf /",
    "rm -r /",
    "sudo rm -rf",
    "> /dev/sd",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",  # fork bomb
    "chmod -r 777 /",
    "| bash",
    "| sh",
    "|bash",
    "|sh",
    "eval $(",
    "$(curl",
    "$(wget",
    "; rm ",
    "&& rm -rf",
    "| rm ",
    "`rm ",
    "sudo su",
    "sudo -i",
    "sudo bash",
)

SHELL_OPERATORS = (";", "&&", "||", "|", "`", "$(", "${", "\n", "\r")

# Autocomplete entries for the terminal
TOOL_SUGGESTIONS = (
    "truthgit status",
    "truthgit verify",
    "truthgit safe-verify",
    "truthgit prove",
    "truthgit search",
    "truthgit log",
    "truthgit init",
)

COMMON_SUGGESTIONS = (
    "ls", "cd", "pwd", "cat", "git status", "git log", "git diff",
    "npm run", "python", "pip", "cargo",
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GatewayError(Exception):
    pass


class ValidationRejected(GatewayError):
    """A validation rule failed. The message is meant for the user."""

    def __init__(self, verdict: "ValidationVerdict"):
        super().__init__(verdict.message or "Command rejected")
        self.verdict = verdict


class SpawnFailure(GatewayError):
    """The OS could not create the process (missing binary, permission denied)."""


class ToolCommandFailed(GatewayError):
    """The tool ran and returned a failure status."""

    def __init__(self, message: str, result: "ExecutionResult"):
        super().__init__(message)
        self.result = result


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationVerdict:
    allowed: bool
    blocked_pattern: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "ValidationVerdict":
        return cls(allowed=True)

    @classmethod
    def reject(cls, message: str, blocked_pattern: Optional[str] = None) -> "ValidationVerdict":
        return cls(allowed=False, blocked_pattern=blocked_pattern, message=message)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str
    stderr: str
    exit_code: int
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GovernanceResult:
    status: str
    action: str
    confidence: float
    reason: str
    audit_ref: str
    ontological_type: Optional[str] = None

    @classmethod
    def from_tool_output(cls, parsed: dict[str, Any]) -> "GovernanceResult":
        """Build a result from `truthgit safe-verify --json` output, filling gaps with defaults."""
        def _text(key: str, default: str) -> str:
            value = parsed.get(key)
            return value if isinstance(value, str) else default

        confidence = parsed.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.0

        ontological_type = parsed.get("ontological_type")
        return cls(
            status=_text("status", "UNKNOWN"),
            action=_text("action", "escalate"),
            confidence=float(confidence),
            reason=_text("reason", "Local verification completed"),
            audit_ref=_text("audit_ref", ""),
            ontological_type=ontological_type if isinstance(ontological_type, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Command requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StructuredCommand:
    """Tool invocation; arguments reach the OS as a discrete list."""
    args: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True)
class RawLineCommand:
    """Free-text line for the platform command interpreter."""
    text: str


CommandRequest = Union[StructuredCommand, RawLineCommand]


# ---------------------------------------------------------------------------
# Structured argument validation
# ---------------------------------------------------------------------------

def validate_tool_args(args) -> ValidationVerdict:
    """Validate an argument vector for the verification tool.

    Rules, in order: non-empty; args[0] exactly allowlisted; no element (the
    subcommand included) contains a forbidden pattern.
    """
    args = list(args)
    if not args:
        return ValidationVerdict.reject("No subcommand provided")

    subcommand = args[0]
    if subcommand not in ALLOWED_TOOL_SUBCOMMANDS:
        return ValidationVerdict.reject(
            f"BLOCKED: TruthGit subcommand '{subcommand}' is not allowed. "
            f"Allowed: {', '.join(ALLOWED_TOOL_SUBCOMMANDS)}",
            blocked_pattern=subcommand,
        )

    for arg in args:
        for pattern in FORBIDDEN_ARG_PATTERNS:
            if pattern in arg:
                return ValidationVerdict.reject(
                    f"BLOCKED: Argument contains forbidden pattern {pattern!r}. "
                    "Shell injection attempt detected.",
                    blocked_pattern=pattern,
                )

    return ValidationVerdict.allow()


# ---------------------------------------------------------------------------
# Shell string validation
# ---------------------------------------------------------------------------

def find_dangerous_pattern(command: str) -> Optional[str]:
    """Step 1: first dangerous pattern in the command, case-insensitive.

    The null-device redirect exempts the whole command from this scan.
    """
    lowered = command.lower()
    if NULL_DEVICE_EXCEPTION in lowered:
        return None
    for pattern in DANGEROUS_PATTERNS:
        if pattern in lowered:
            return pattern
    return None


def find_shell_operator(command: str) -> Optional[str]:
    """Step 2: first shell operator anywhere in the trimmed command."""
    trimmed = command.strip()
    for op in SHELL_OPERATORS:
        if op in trimmed:
            return op
    return None


def matches_allowed_prefix(command: str) -> bool:
    """Step 3: trimmed command equals an allowlist entry or starts with one."""
    trimmed = command.strip()
    for prefix in ALLOWED_COMMAND_PREFIXES:
        if trimmed.startswith(prefix) or trimmed == prefix.strip():
            return True
    return False


def _leading_token(command: str) -> str:
    parts = command.split()
    return parts[0] if parts else command.strip()


def check_command_safety(command: str) -> ValidationVerdict:
    """Validate a raw line for the interactive shell.

    The order is fixed: the operator scan runs even when the prefix is allowed,
    since an operator can append an unrelated command to an allowed one.
    """
    pattern = find_dangerous_pattern(command)
    if pattern is not None:
        return ValidationVerdict.reject(
            f"BLOCKED: Command contains dangerous pattern {pattern!r}. Execution denied.",
            blocked_pattern=pattern,
        )

    op = find_shell_operator(command)
    if op is not None:
        return ValidationVerdict.reject(
            f"BLOCKED: Command contains shell operator {op!r}. "
            "Chaining, piping and substitution are not permitted.",
            blocked_pattern=op,
        )

    if not matches_allowed_prefix(command):
        token = _leading_token(command)
        if not token:
            return ValidationVerdict.reject("BLOCKED: Empty command.")
        return ValidationVerdict.reject(
            f"BLOCKED: Command '{token}' is not in the allowed list. "
            "Only truthgit and safe read-only commands are permitted.",
            blocked_pattern=token,
        )

    return ValidationVerdict.allow()


def validate_request(request: CommandRequest) -> ValidationVerdict:
    """Route a request to the validator for its shape."""
    if isinstance(request, StructuredCommand):
        return validate_tool_args(request.args)
    if isinstance(request, RawLineCommand):
        return check_command_safety(request.text)
    raise TypeError(f"Unsupported command request: {type(request).__name__}")


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

def get_shell_suggestions(prefix: str) -> list[str]:
    """Case-insensitive prefix completion over the static command list."""
    prefix_lower = prefix.lower()
    return [
        cmd for cmd in TOOL_SUGGESTIONS + COMMON_SUGGESTIONS
        if cmd.lower().startswith(prefix_lower)
    ]


# ---------------------------------------------------------------------------
# Process spawning
# ---------------------------------------------------------------------------

def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _shell_argv(line: str) -> list[str]:
    if sys.platform.startswith("win"):
        return ["cmd", "/C", line]
    return ["bash", "-c", line]


def resolve_working_directory(
    working_directory: Optional[str], settings: Optional[AppSettings]
) -> str:
    """Explicit directory -> parent of the truth repo path -> current directory."""
    if working_directory:
        return working_directory
    if settings is not None and settings.truth_repo_path:
        return str(Path(settings.truth_repo_path).parent)
    return "."


def _spawn(argv: list[str], cwd: str) -> ExecutionResult:
    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            cwd=cwd,
            shell=False,
        )
    except (OSError, ValueError) as e:
        raise SpawnFailure(f"Failed to execute command: {e}") from e

    exit_code = result.returncode if result.returncode >= 0 else NO_EXIT_CODE
    return ExecutionResult(
        stdout=_decode(result.stdout),
        stderr=_decode(result.stderr),
        exit_code=exit_code,
        success=result.returncode == 0,
    )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

@dataclass
class AuditRecord:
    timestamp: str
    session_id: str
    sequence: int
    kind: str
    command: str
    allowed: bool
    blocked_pattern: Optional[str]
    message: Optional[str]
    exit_code: Optional[int]
    success: Optional[bool]
    working_directory: Optional[str]


def _write_audit_record(record: AuditRecord, audit_dir: Path, session_id: str):
    """Append one audit record to the session's JSONL file."""
    audit_dir.mkdir(parents=True, exist_ok=True)
    filepath = audit_dir / f"gateway_audit_{session_id}.jsonl"
    with open(filepath, "a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(record), default=str) + "\n")


# ---------------------------------------------------------------------------
# CommandGateway — main class
# ---------------------------------------------------------------------------

class CommandGateway:
    """Single choke point between the UI and OS processes.

    Usage:
        gateway = CommandGateway(session_id="term_001", audit_dir="./audit")
        result = gateway.execute_shell("git log --oneline")
    """

    def __init__(
        self,
        session_id: str = "default",
        audit_dir: str = DEFAULT_AUDIT_DIR,
        settings: Optional[SettingsService] = None,
        audit_enabled: Optional[bool] = None,
        tool_executable: str = TOOL_EXECUTABLE,
    ):
        self._session_id = session_id
        self._audit_dir = Path(audit_dir)
        self._settings = settings if settings is not None else get_settings_service()
        self._audit_enabled = audit_enabled
        self._tool = tool_executable
        self._sequence = 0
        self._audit_lock = threading.Lock()

    # --- Validation ---

    def check_command_safety(self, command: str) -> ValidationVerdict:
        """Read-only verdict for a raw line; nothing is executed."""
        return check_command_safety(command)

    # --- Execution facade ---

    def _execute_validated(
        self,
        request: CommandRequest,
        verdict: ValidationVerdict,
        working_directory: Optional[str] = None,
        settings: Optional[AppSettings] = None,
    ) -> ExecutionResult:
        """Spawn the process for a request whose verdict is allowed.

        Raises SpawnFailure if the OS cannot start it. A non-zero exit is
        returned as success=False, never raised.
        """
        if not verdict.allowed:
            raise ValidationRejected(verdict)

        if settings is None:
            settings = self._settings.get()
        cwd = resolve_working_directory(working_directory, settings)

        if isinstance(request, StructuredCommand):
            argv = [self._tool, *request.args]
        elif isinstance(request, RawLineCommand):
            argv = _shell_argv(request.text.strip())
        else:
            raise TypeError(f"Unsupported command request: {type(request).__name__}")

        return _spawn(argv, cwd)

    def execute_shell(
        self, command: str, working_directory: Optional[str] = None
    ) -> ExecutionResult:
        """Validate and run one terminal line through the platform shell."""
        settings = self._settings.get()
        request = RawLineCommand(command)
        verdict = validate_request(request)
        if not verdict.allowed:
            self._audit(settings, KIND_SHELL, command, verdict)
            raise ValidationRejected(verdict)

        cwd = resolve_working_directory(working_directory, settings)
        try:
            result = self._execute_validated(request, verdict, cwd, settings)
        except SpawnFailure as e:
            self._audit(settings, KIND_SHELL, command, verdict,
                        working_directory=cwd, message=str(e))
            raise
        self._audit(settings, KIND_SHELL, command, verdict,
                    result=result, working_directory=cwd)
        return result

    def run_tool_command(self, args) -> str:
        """Validate and run the verification tool; returns its stdout.

        Raises ValidationRejected, SpawnFailure, or ToolCommandFailed when the
        tool exits non-zero.
        """
        result = self._run_tool(args)
        if not result.success:
            raise ToolCommandFailed(f"TruthGit error: {result.stderr}", result)
        return result.stdout

    def verify_claim_local(self, claim: str, domain: str) -> str:
        result = self._run_tool(["verify", claim, "--domain", domain, "--json"])
        if not result.success:
            raise ToolCommandFailed(f"Verification failed: {result.stderr}", result)
        return result.stdout

    def governance_verify_local(
        self, claim: str, domain: str, risk_profile: Optional[str] = None
    ) -> GovernanceResult:
        """Run `truthgit safe-verify ... --json` and parse its verdict."""
        if risk_profile is None:
            risk_profile = self._settings.get().default_risk_profile

        result = self._run_tool([
            "safe-verify", claim, "--domain", domain, "--risk", risk_profile, "--json",
        ])
        if not result.success:
            raise ToolCommandFailed(f"TruthGit verification failed: {result.stderr}", result)

        try:
            parsed = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise GatewayError(f"Failed to parse TruthGit output: {e}") from e
        if not isinstance(parsed, dict):
            raise GatewayError("Failed to parse TruthGit output: expected a JSON object")
        return GovernanceResult.from_tool_output(parsed)

    def get_shell_suggestions(self, prefix: str) -> list[str]:
        return get_shell_suggestions(prefix)

    # --- Internals ---

    def _run_tool(self, args) -> ExecutionResult:
        settings = self._settings.get()
        request = StructuredCommand(tuple(args))
        command_str = " ".join([self._tool, *request.args])
        verdict = validate_request(request)
        if not verdict.allowed:
            self._audit(settings, KIND_TOOL, command_str, verdict)
            raise ValidationRejected(verdict)

        cwd = resolve_working_directory(None, settings)
        try:
            result = self._execute_validated(request, verdict, cwd, settings)
        except SpawnFailure as e:
            self._audit(settings, KIND_TOOL, command_str, verdict,
                        working_directory=cwd, message=str(e))
            raise
        self._audit(settings, KIND_TOOL, command_str, verdict,
                    result=result, working_directory=cwd)
        return result

    def _audit(
        self,
        settings: AppSettings,
        kind: str,
        command: str,
        verdict: ValidationVerdict,
        result: Optional[ExecutionResult] = None,
        working_directory: Optional[str] = None,
        message: Optional[str] = None,
    ):
        """Write an audit record. Failures are logged to stderr but never block execution."""
        enabled = self._audit_enabled
        if enabled is None:
            enabled = settings.auto_save_audit
        if not enabled:
            return

        # One writer at a time keeps sequence numbers and file order aligned
        with self._audit_lock:
            self._sequence += 1
            record = AuditRecord(
                timestamp=datetime.now(timezone.utc).isoformat(),
                session_id=self._session_id,
                sequence=self._sequence,
                kind=kind,
                command=command,
                allowed=verdict.allowed,
                blocked_pattern=verdict.blocked_pattern,
                message=message if message is not None else verdict.message,
                exit_code=result.exit_code if result else None,
                success=result.success if result else None,
                working_directory=working_directory,
            )

            try:
                _write_audit_record(record, self._audit_dir, self._session_id)
            except Exception as e:
                print(f"WARNING: Audit log write failure: {e}", file=sys.stderr)
