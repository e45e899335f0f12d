"""ctypes bindings for the kernel32 pseudo console and process APIs."""

from __future__ import annotations

import ctypes
import logging as py_logging
import sys
from collections.abc import Mapping
from ctypes import (
    POINTER,
    Structure,
    byref,
    c_int,
    c_long,
    c_short,
    c_size_t,
    c_ubyte,
    c_uint,
    c_uint16,
    c_uint32,
    c_void_p,
    c_wchar_p,
)
from typing import NamedTuple

logger = py_logging.getLogger(__name__)

HANDLE = c_void_p
DWORD = c_uint32
WORD = c_uint16
BOOL = c_int
HRESULT = c_long
SIZE_T = c_size_t

S_OK = 0
STILL_ACTIVE = 259
WAIT_OBJECT_0 = 0
ERROR_BROKEN_PIPE = 109
ERROR_NO_DATA = 232
STARTF_USESTDHANDLES = 0x00000100
EXTENDED_STARTUPINFO_PRESENT = 0x00080000
CREATE_UNICODE_ENVIRONMENT = 0x00000400
PROC_THREAD_ATTRIBUTE_PSEUDOCONSOLE = 0x00020016
PIPE_BUFFER_SIZE = 65536


class COORD(Structure):
    _fields_ = [("X", c_short), ("Y", c_short)]


class STARTUPINFOW(Structure):
    _fields_ = [
        ("cb", DWORD),
        ("lpReserved", c_wchar_p),
        ("lpDesktop", c_wchar_p),
        ("lpTitle", c_wchar_p),
        ("dwX", DWORD),
        ("dwY", DWORD),
        ("dwXSize", DWORD),
        ("dwYSize", DWORD),
        ("dwXCountChars", DWORD),
        ("dwYCountChars", DWORD),
        ("dwFillAttribute", DWORD),
        ("dwFlags", DWORD),
        ("wShowWindow", WORD),
        ("cbReserved2", WORD),
        ("lpReserved2", POINTER(c_ubyte)),
        ("hStdInput", HANDLE),
        ("hStdOutput", HANDLE),
        ("hStdError", HANDLE),
    ]


class STARTUPINFOEXW(Structure):
    _fields_ = [("StartupInfo", STARTUPINFOW), ("lpAttributeList", c_void_p)]


class PROCESS_INFORMATION(Structure):
    _fields_ = [
        ("hProcess", HANDLE),
        ("hThread", HANDLE),
        ("dwProcessId", DWORD),
        ("dwThreadId", DWORD),
    ]


class Win32Process(NamedTuple):
    process: int
    thread: int
    pid: int


def environment_block(env: Mapping[str, str]) -> str:
    # CreateProcessW expects NUL separated NAME=VALUE pairs sorted by name.
    entries = [f"{name}={value}" for name, value in sorted(env.items(), key=lambda item: item[0].upper())]
    return "\0".join(entries) + "\0\0"


def _hresult_error(function: str, hresult: int) -> OSError:
    code = hresult & 0xFFFFFFFF
    error = OSError(f"{function} failed with HRESULT 0x{code:08X}")
    error.winerror = code  # type: ignore[attr-defined]
    return error


class Win32Api:
    """Thin, typed wrappers over kernel32; failures raise OSError."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise OSError("kernel32 is only available on Windows")
        self._k32 = ctypes.WinDLL("kernel32", use_last_error=True)
        self._bind()

    def _bind(self) -> None:
        k32 = self._k32
        k32.CreatePipe.argtypes = [POINTER(HANDLE), POINTER(HANDLE), c_void_p, DWORD]
        k32.CreatePipe.restype = BOOL
        k32.CreatePseudoConsole.argtypes = [COORD, HANDLE, HANDLE, DWORD, POINTER(HANDLE)]
        k32.CreatePseudoConsole.restype = HRESULT
        k32.ResizePseudoConsole.argtypes = [HANDLE, COORD]
        k32.ResizePseudoConsole.restype = HRESULT
        k32.ClosePseudoConsole.argtypes = [HANDLE]
        k32.ClosePseudoConsole.restype = None
        k32.InitializeProcThreadAttributeList.argtypes = [c_void_p, DWORD, DWORD, POINTER(SIZE_T)]
        k32.InitializeProcThreadAttributeList.restype = BOOL
        k32.UpdateProcThreadAttribute.argtypes = [c_void_p, DWORD, SIZE_T, c_void_p, SIZE_T, c_void_p, c_void_p]
        k32.UpdateProcThreadAttribute.restype = BOOL
        k32.DeleteProcThreadAttributeList.argtypes = [c_void_p]
        k32.DeleteProcThreadAttributeList.restype = None
        k32.CreateProcessW.argtypes = [
            c_wchar_p,
            c_wchar_p,
            c_void_p,
            c_void_p,
            BOOL,
            DWORD,
            c_void_p,
            c_wchar_p,
            POINTER(STARTUPINFOEXW),
            POINTER(PROCESS_INFORMATION),
        ]
        k32.CreateProcessW.restype = BOOL
        k32.ReadFile.argtypes = [HANDLE, c_void_p, DWORD, POINTER(DWORD), c_void_p]
        k32.ReadFile.restype = BOOL
        k32.WriteFile.argtypes = [HANDLE, c_void_p, DWORD, POINTER(DWORD), c_void_p]
        k32.WriteFile.restype = BOOL
        k32.PeekNamedPipe.argtypes = [HANDLE, c_void_p, DWORD, c_void_p, POINTER(DWORD), c_void_p]
        k32.PeekNamedPipe.restype = BOOL
        k32.WaitForSingleObject.argtypes = [HANDLE, DWORD]
        k32.WaitForSingleObject.restype = DWORD
        k32.GetExitCodeProcess.argtypes = [HANDLE, POINTER(DWORD)]
        k32.GetExitCodeProcess.restype = BOOL
        k32.TerminateProcess.argtypes = [HANDLE, c_uint]
        k32.TerminateProcess.restype = BOOL
        k32.CloseHandle.argtypes = [HANDLE]
        k32.CloseHandle.restype = BOOL

    def _last_error(self, function: str) -> OSError:
        code = ctypes.get_last_error()
        logger.debug("%s failed with Win32 error 0x%08X", function, code)
        return ctypes.WinError(code)  # type: ignore[attr-defined]

    def create_pipe(self) -> tuple[int, int]:
        read_end = HANDLE()
        write_end = HANDLE()
        if not self._k32.CreatePipe(byref(read_end), byref(write_end), None, PIPE_BUFFER_SIZE):
            raise self._last_error("CreatePipe")
        return int(read_end.value or 0), int(write_end.value or 0)

    def create_pseudo_console(self, cols: int, rows: int, input_read: int, output_write: int) -> int:
        console = HANDLE()
        hresult = self._k32.CreatePseudoConsole(COORD(cols, rows), input_read, output_write, 0, byref(console))
        if hresult != S_OK:
            raise _hresult_error("CreatePseudoConsole", hresult)
        return int(console.value or 0)

    def resize_pseudo_console(self, console: int, cols: int, rows: int) -> None:
        hresult = self._k32.ResizePseudoConsole(console, COORD(cols, rows))
        if hresult != S_OK:
            raise _hresult_error("ResizePseudoConsole", hresult)

    def close_pseudo_console(self, console: int) -> None:
        self._k32.ClosePseudoConsole(console)

    def create_process(
        self,
        command_line: str,
        *,
        cwd: str | None,
        environment: str | None,
        pseudo_console: int,
    ) -> Win32Process:
        size = SIZE_T(0)
        # The first call only reports the required buffer size.
        self._k32.InitializeProcThreadAttributeList(None, 1, 0, byref(size))
        attributes = (c_ubyte * size.value)()
        if not self._k32.InitializeProcThreadAttributeList(attributes, 1, 0, byref(size)):
            raise self._last_error("InitializeProcThreadAttributeList")
        try:
            if not self._k32.UpdateProcThreadAttribute(
                attributes,
                0,
                PROC_THREAD_ATTRIBUTE_PSEUDOCONSOLE,
                pseudo_console,
                ctypes.sizeof(HANDLE),
                None,
                None,
            ):
                raise self._last_error("UpdateProcThreadAttribute")

            startup = STARTUPINFOEXW()
            startup.StartupInfo.cb = ctypes.sizeof(STARTUPINFOEXW)
            # Null std handles keep the child off the parent's redirected streams.
            startup.StartupInfo.dwFlags = STARTF_USESTDHANDLES
            startup.lpAttributeList = ctypes.cast(attributes, c_void_p)
            info = PROCESS_INFORMATION()
            command_buffer = ctypes.create_unicode_buffer(command_line)
            env_buffer = ctypes.create_unicode_buffer(environment) if environment is not None else None
            flags = EXTENDED_STARTUPINFO_PRESENT | CREATE_UNICODE_ENVIRONMENT
            if not self._k32.CreateProcessW(
                None,
                command_buffer,
                None,
                None,
                False,
                flags,
                ctypes.cast(env_buffer, c_void_p) if env_buffer is not None else None,
                cwd,
                byref(startup),
                byref(info),
            ):
                raise self._last_error("CreateProcessW")
        finally:
            self._k32.DeleteProcThreadAttributeList(attributes)
        return Win32Process(
            process=int(info.hProcess or 0),
            thread=int(info.hThread or 0),
            pid=int(info.dwProcessId),
        )

    def read_file(self, handle: int, size: int) -> bytes:
        buffer = ctypes.create_string_buffer(size)
        read = DWORD(0)
        if not self._k32.ReadFile(handle, buffer, size, byref(read), None):
            code = ctypes.get_last_error()
            if code in (ERROR_BROKEN_PIPE, ERROR_NO_DATA):
                return b""
            raise ctypes.WinError(code)  # type: ignore[attr-defined]
        return buffer.raw[: read.value]

    def peek_available(self, handle: int) -> int:
        available = DWORD(0)
        if not self._k32.PeekNamedPipe(handle, None, 0, None, byref(available), None):
            raise self._last_error("PeekNamedPipe")
        return int(available.value)

    def write_file(self, handle: int, data: bytes) -> int:
        buffer = ctypes.create_string_buffer(data, len(data))
        written = DWORD(0)
        if not self._k32.WriteFile(handle, buffer, len(data), byref(written), None):
            raise self._last_error("WriteFile")
        return int(written.value)

    def wait_for_process(self, process: int, timeout: float) -> bool:
        return self._k32.WaitForSingleObject(process, max(0, int(timeout * 1000))) == WAIT_OBJECT_0

    def exit_code(self, process: int) -> int | None:
        code = DWORD(0)
        if not self._k32.GetExitCodeProcess(process, byref(code)):
            raise self._last_error("GetExitCodeProcess")
        if code.value == STILL_ACTIVE:
            return None
        return int(code.value)

    def terminate_process(self, process: int, exit_code: int = 1) -> None:
        if not self._k32.TerminateProcess(process, exit_code):
            raise self._last_error("TerminateProcess")

    def close_handle(self, handle: int) -> None:
        if not self._k32.CloseHandle(handle):
            raise self._last_error("CloseHandle")


def has_pseudo_console_api() -> bool:
    if sys.platform != "win32":
        return False
    try:
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    except (AttributeError, OSError):
        return False
    # Attribute lookup resolves the export with GetProcAddress.
    return hasattr(kernel32, "CreatePseudoConsole")
