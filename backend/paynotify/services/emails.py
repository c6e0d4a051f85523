from dataclasses import dataclass
from datetime import datetime
from html import escape


@dataclass(frozen=True)
class EmailContent:
    subject: str
    text: str
    html: str


def render_access_code_email(
    subject: str,
    code: str,
    valid_until: datetime | str | None,
    receipt_url: str | None = None,
) -> EmailContent:
    if isinstance(valid_until, datetime):
        valid_until = valid_until.isoformat()

    lines = ["O seu codigo de acesso:", code]
    if valid_until:
        lines.append(f"Valido ate: {valid_until}")
    if receipt_url:
        lines.append(f"Recibo: {receipt_url}")

    html = f"<p>O seu codigo de acesso:</p><p><strong>{escape(code)}</strong></p>"
    if valid_until:
        html += f"<p>Valido ate: {escape(valid_until)}</p>"
    if receipt_url:
        url = escape(receipt_url, quote=True)
        html += f'<p>Recibo: <a href="{url}">{url}</a></p>'

    return EmailContent(subject=subject, text="\n".join(lines), html=html)
