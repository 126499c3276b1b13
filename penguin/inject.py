"""Injection of the reload client into HTML documents."""

from __future__ import annotations

from .config import Config

_CLIENT_JS = r"""(function () {
  "use strict";

  var OVERLAY_ID = "__penguin_message_overlay";

  function showMessage(html) {
    var overlay = document.getElementById(OVERLAY_ID);
    if (!overlay) {
      overlay = document.createElement("div");
      overlay.id = OVERLAY_ID;
      overlay.style.position = "fixed";
      overlay.style.top = "0";
      overlay.style.left = "0";
      overlay.style.right = "0";
      overlay.style.zIndex = "2147483647";
      overlay.style.padding = "16px";
      overlay.style.background = "rgba(255, 255, 255, 0.95)";
      overlay.style.borderBottom = "2px solid #888";
      overlay.style.fontFamily = "sans-serif";
      document.body.appendChild(overlay);
    }
    overlay.innerHTML = html;
  }

  function connect() {
    var protocol = window.location.protocol === "https:" ? "wss://" : "ws://";
    var socket = new WebSocket(protocol + window.location.host + "{{ control_path }}");

    socket.onmessage = function (event) {
      var data = String(event.data);
      if (data === "reload") {
        window.location.reload();
      } else if (data.indexOf("message\n") === 0) {
        showMessage(data.substring("message\n".length));
      }
    };

    socket.onclose = function () {
      setTimeout(connect, 1000);
    };
  }

  connect();
})();
"""


def script(config: Config) -> str:
    """Return the client JavaScript with the control path filled in."""
    return _CLIENT_JS.replace("{{ control_path }}", config.control_path)


def _body_close_index(data: bytes) -> int | None:
    """Position of the last '</body>' that is not inside an HTML comment."""
    found = None
    inside_comment = False
    pos = 0
    while True:
        if inside_comment:
            end = data.find(b"-->", pos)
            if end < 0:
                return found
            inside_comment = False
            pos = end + 1
        else:
            body = data.find(b"</body>", pos)
            comment = data.find(b"<!--", pos)
            if body < 0 and comment < 0:
                return found
            if comment < 0 or 0 <= body < comment:
                found = body
                pos = body + 1
            else:
                inside_comment = True
                pos = comment + 1


def inject_into(data: bytes, config: Config) -> bytes:
    """Insert the client script tag before the closing body tag, or at the end."""
    index = _body_close_index(data)
    if index is None:
        index = len(data)
    tag = f'<script src="{config.control_path}/client.js" defer></script>'.encode()
    return data[:index] + tag + data[index:]