"""Deployable sample artifacts written to temporary directories at startup."""
from __future__ import annotations

import shutil
import tempfile
import textwrap
from collections.abc import Mapping
from pathlib import Path

APP_SOURCE = textwrap.dedent(
    '''
    import itertools
    import os
    import sys
    import threading
    import time
    from http.server import BaseHTTPRequestHandler, HTTPServer


    def emit_log_lines():
        for number in itertools.count(1):
            print(f"uptimer log line {number}", flush=True)
            time.sleep(0.5)


    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            body = b"Hello from uptimer\\n"
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            sys.stderr.write(format % args + "\\n")


    if __name__ == "__main__":
        threading.Thread(target=emit_log_lines, daemon=True).start()
        HTTPServer(("0.0.0.0", int(os.environ.get("PORT", "8080"))), Handler).serve_forever()
    '''
).lstrip()

SYSLOG_SINK_SOURCE = textwrap.dedent(
    '''
    import os
    import socketserver


    class Handler(socketserver.StreamRequestHandler):
        def handle(self):
            for line in self.rfile:
                print(line.decode("utf-8", "replace").rstrip(), flush=True)


    class Server(socketserver.ThreadingMixIn, socketserver.TCPServer):
        allow_reuse_address = True
        daemon_threads = True


    if __name__ == "__main__":
        Server(("0.0.0.0", int(os.environ.get("PORT", "8080"))), Handler).serve_forever()
    '''
).lstrip()

WIN_WEB_CONFIG = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
    <system.web>
      <customErrors mode="Off"/>
      <compilation debug="true" targetFramework="4.5" />
      <httpRuntime targetFramework="4.5" />
    </system.web>
</configuration>
"""

WIN_GLOBAL_ASAX = """<%@ Application Language="C#" %>
<script runat="server">
    void Application_Error(object sender, EventArgs e)
    {
        Exception lastError = Server.GetLastError();
        Console.WriteLine("Unhandled exception: " + lastError.Message + lastError.StackTrace);
    }
</script>
"""

WIN_DEFAULT_ASPX_CS = """using System;
using System.Web;

public partial class _Default : System.Web.UI.Page
{
    protected void Page_Load(object sender, EventArgs e)
    {
        Response.Cache.SetCacheability(HttpCacheability.NoCache);
        Response.Cache.SetNoStore();
    }
}
"""

WIN_DEFAULT_ASPX = """<%@ Page Language="C#" AutoEventWireup="true" CodeFile="Default.aspx.cs" Inherits="_Default" %>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
<head runat="server">
    <title>Hello</title>
</head>
<body>
    <form id="form1" runat="server">
        <h2>Hello</h2>
    </form>
</body>
</html>
"""


def python_manifest(app_name: str, *, use_buildpack_detection: bool, health_check: str) -> str:
    """Render the manifest for a bundled Python app."""
    manifest = textwrap.dedent(
        f"""\
        applications:
        - name: {app_name}
          memory: 64M
          disk_quota: 256M
          command: python app.py
          health-check-type: {health_check}
        """
    )
    if not use_buildpack_detection:
        manifest += "  buildpacks:\n  - python_buildpack\n"
    return manifest


def windows_manifest(app_name: str, *, use_buildpack_detection: bool) -> str:
    """Render the manifest for the bundled Windows app."""
    manifest = textwrap.dedent(
        f"""\
        applications:
        - name: {app_name}
          memory: 1024M
          stack: windows
        """
    )
    if not use_buildpack_detection:
        manifest += "  buildpacks:\n  - hwc_buildpack\n"
    return manifest


def _write_app(files: Mapping[str, str]) -> Path:
    directory = Path(tempfile.mkdtemp(prefix="uptimer-sample-"))
    try:
        for name, content in files.items():
            (directory / name).write_text(content, encoding="utf-8")
    except OSError:
        shutil.rmtree(directory, ignore_errors=True)
        raise
    return directory


def prepare_app(*, use_buildpack_detection: bool) -> Path:
    """Write the sample web app that serves HTTP and emits numbered log lines."""
    return _write_app(
        {
            "app.py": APP_SOURCE,
            "requirements.txt": "",
            "manifest.yml": python_manifest(
                "app",
                use_buildpack_detection=use_buildpack_detection,
                health_check="http",
            ),
        }
    )


def prepare_syslog_sink(*, use_buildpack_detection: bool) -> Path:
    """Write the syslog sink app that prints every forwarded line."""
    return _write_app(
        {
            "app.py": SYSLOG_SINK_SOURCE,
            "requirements.txt": "",
            "manifest.yml": python_manifest(
                "syslogSink",
                use_buildpack_detection=use_buildpack_detection,
                health_check="port",
            ),
        }
    )


def prepare_windows_app(*, use_buildpack_detection: bool) -> Path:
    """Write the ASP.NET sample app used on Windows cells."""
    return _write_app(
        {
            "Web.config": WIN_WEB_CONFIG,
            "Global.asax": WIN_GLOBAL_ASAX,
            "Default.aspx.cs": WIN_DEFAULT_ASPX_CS,
            "Default.aspx": WIN_DEFAULT_ASPX,
            "manifest.yml": windows_manifest(
                "winapp",
                use_buildpack_detection=use_buildpack_detection,
            ),
        }
    )


__all__ = [
    "prepare_app",
    "prepare_syslog_sink",
    "prepare_windows_app",
    "python_manifest",
    "windows_manifest",
]
