"""Process identity snapshot rendered as the plain-text status document.

The document is built as bytes: environment values and the working directory
are passed through exactly as the OS holds them, whatever their encoding.
"""
from __future__ import annotations

import grp
import os
import resource
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class ProcessFacts:
    """What a supervisor needs to check about the process it launched.

    Exactly one of each `<x>` / `<x>_error` pair is set.
    """

    pid: int
    cwd: Optional[bytes]
    uid: int
    euid: int
    gid: int
    groups: Optional[List[str]] = None
    groups_error: Optional[str] = None
    nofile_limit: Optional[str] = None
    nofile_error: Optional[str] = None
    cwd_error: Optional[str] = None
    environ: Tuple[bytes, ...] = field(default_factory=tuple)


def _group_names() -> List[str]:
    names = []
    for gid in os.getgroups():
        try:
            names.append(grp.getgrgid(gid).gr_name)
        except KeyError:
            names.append(str(gid))
    return names


def _nofile_limit() -> str:
    soft, _hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft == resource.RLIM_INFINITY:
        return "unlimited"
    return str(soft)


def sorted_environ() -> Tuple[bytes, ...]:
    return tuple(sorted(key + b"=" + value for key, value in os.environb.items()))


def collect_facts() -> ProcessFacts:
    """Take a fresh snapshot; sub-query failures are kept, not raised."""
    cwd = cwd_error = None
    try:
        cwd = os.getcwdb()
    except OSError as e:
        cwd_error = str(e)

    groups = groups_error = None
    try:
        groups = _group_names()
    except OSError as e:
        groups_error = str(e)

    nofile = nofile_error = None
    try:
        nofile = _nofile_limit()
    except (OSError, ValueError) as e:
        nofile_error = str(e)

    return ProcessFacts(
        pid=os.getpid(),
        cwd=cwd,
        uid=os.getuid(),
        euid=os.geteuid(),
        gid=os.getgid(),
        groups=groups,
        groups_error=groups_error,
        nofile_limit=nofile,
        nofile_error=nofile_error,
        cwd_error=cwd_error,
        environ=sorted_environ(),
    )


def _quote(message: str) -> str:
    return '"' + message.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _line(text: str) -> bytes:
    return os.fsencode(text)


def render_facts(facts: ProcessFacts) -> bytes:
    lines = [_line(f"pid={facts.pid}")]
    if facts.cwd_error is not None:
        lines.append(_line(f"cwd_err={_quote(facts.cwd_error)}"))
    else:
        lines.append(b"cwd=" + (facts.cwd or b""))
    lines.append(_line(f"uid={facts.uid}"))
    lines.append(_line(f"euid={facts.euid}"))
    lines.append(_line(f"gid={facts.gid}"))
    if facts.groups_error is not None:
        lines.append(_line(f"groups_err={_quote(facts.groups_error)}"))
    else:
        lines.append(_line("groups=" + " ".join(facts.groups or [])))
    if facts.nofile_error is not None:
        lines.append(_line(f"ulimit_nofiles_err={_quote(facts.nofile_error)}"))
    else:
        lines.append(_line(f"ulimit_nofiles={facts.nofile_limit}"))
    lines.extend(facts.environ)
    return b"".join(line + b"\n" for line in lines)


def status_document() -> bytes:
    return render_facts(collect_facts())
