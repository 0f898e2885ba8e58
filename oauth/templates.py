"""HTML templates for the OAuth consent step.

Colors:
- Background: #FAF9F7 (warm cream)
- Primary: #FC4C02 (orange)
- Primary hover: #E04402
- Text: #1A1915 (dark charcoal)
- Secondary text: #6B6860
- Border: #E5E4E0, #D9D8D4
"""

import html

CONSENT_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authorize - Strava MCP Gateway</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 450px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        .app-info {{ display: flex; align-items: center; gap: 15px; padding: 20px; background: #F5F5F0;
                    border-radius: 8px; margin: 20px 0; }}
        .app-icon {{ width: 50px; height: 50px; background: #FC4C02; border-radius: 10px;
                    display: flex; align-items: center; justify-content: center; color: white; font-size: 24px; font-weight: 600; }}
        .app-name {{ font-weight: 600; color: #1A1915; }}
        .redirect {{ color: #6B6860; font-size: 13px; word-break: break-all; }}
        .scopes {{ margin: 20px 0; }}
        .scope {{ display: flex; align-items: center; gap: 10px; padding: 12px; background: #F5F5F0;
                 border-radius: 8px; margin-bottom: 10px; }}
        .scope-icon {{ color: #FC4C02; font-weight: bold; }}
        .buttons {{ display: flex; gap: 12px; }}
        button {{ flex: 1; padding: 14px; border-radius: 8px; font-size: 15px; font-weight: 600; cursor: pointer; transition: all 0.2s; }}
        .allow {{ background: #FC4C02; color: white; border: none; }}
        .deny {{ background: white; color: #6B6860; border: 1px solid #D9D8D4; }}
        .allow:hover {{ background: #E04402; }}
        .deny:hover {{ background: #F5F5F0; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Authorize Access</h1>
        <div class="app-info">
            <div class="app-icon">S</div>
            <div>
                <div class="app-name">{client_name}</div>
                <div style="color: #6B6860; font-size: 14px;">wants to use the Strava tools on this server</div>
                <div class="redirect">Redirects to {redirect_uri_display}</div>
            </div>
        </div>
        <div class="scopes">
{scope_items}
        </div>
        <form method="POST" action="/authorize">
{hidden_fields}
            <div class="buttons">
                <button type="submit" name="action" value="deny" class="deny">Deny</button>
                <button type="submit" name="action" value="allow" class="allow">Allow</button>
            </div>
        </form>
    </div>
</body>
</html>
"""

SCOPE_ITEM = """            <div class="scope">
                <span class="scope-icon">✓</span>
                <span>{scope}</span>
            </div>"""

HIDDEN_FIELD = '            <input type="hidden" name="{name}" value="{value}">'


def render_consent_page(client_name: str, params: dict[str, str], scopes: list[str]) -> str:
    """Render the consent form with every authorize parameter as a hidden field."""
    hidden_fields = "\n".join(
        HIDDEN_FIELD.format(name=html.escape(name, quote=True), value=html.escape(value, quote=True))
        for name, value in params.items()
        if value
    )
    scope_items = "\n".join(SCOPE_ITEM.format(scope=html.escape(scope)) for scope in scopes)
    return CONSENT_PAGE.format(
        client_name=html.escape(client_name),
        redirect_uri_display=html.escape(params.get("redirect_uri", "")),
        scope_items=scope_items,
        hidden_fields=hidden_fields,
    )
