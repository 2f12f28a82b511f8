"""HTML email templates for assessment invitations."""

from html import escape

from ...platform.brand import BRAND_NAME


def assessment_invite_html(
    candidate_name: str,
    company_name: str,
    job_title: str,
    assessment_title: str,
    time_limit_minutes: int,
    invite_url: str,
    expires_on: str | None = None,
) -> str:
    expiry_line = (
        f'<p style="margin:0 0 16px;color:#4b5563;font-size:15px;">This invitation expires on <strong>{escape(expires_on)}</strong>.</p>'
        if expires_on
        else ""
    )
    return f"""\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin:0;padding:0;background-color:#f4f4f7;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Helvetica,Arial,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background-color:#f4f4f7;padding:40px 20px;">
    <tr>
      <td align="center">
        <table width="600" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:8px;overflow:hidden;">
          <tr>
            <td style="background-color:#0f766e;padding:28px 40px;text-align:center;">
              <h1 style="margin:0;color:#ffffff;font-size:24px;font-weight:700;">{escape(BRAND_NAME)}</h1>
            </td>
          </tr>
          <tr>
            <td style="padding:40px;">
              <h2 style="margin:0 0 16px;color:#1f2937;font-size:20px;">Hi {escape(candidate_name)},</h2>
              <p style="margin:0 0 16px;color:#4b5563;font-size:16px;line-height:1.6;">
                <strong>{escape(company_name)}</strong> invited you to take the
                <strong>{escape(assessment_title)}</strong> assessment for the
                <strong>{escape(job_title)}</strong> role.
              </p>
              <p style="margin:0 0 16px;color:#4b5563;font-size:15px;">
                Once started, you have {int(time_limit_minutes)} minutes to finish.
              </p>
              {expiry_line}
              <table cellpadding="0" cellspacing="0" style="margin:0 auto 24px;">
                <tr>
                  <td style="background-color:#0f766e;border-radius:6px;text-align:center;">
                    <a href="{escape(invite_url, quote=True)}"
                       style="display:inline-block;padding:14px 32px;color:#ffffff;font-size:16px;font-weight:600;text-decoration:none;">
                      Start Assessment
                    </a>
                  </td>
                </tr>
              </table>
              <p style="margin:0 0 8px;color:#9ca3af;font-size:13px;">Or copy this link into your browser:</p>
              <p style="margin:0;color:#0f766e;font-size:13px;word-break:break-all;">{escape(invite_url)}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def assessment_invite_text(
    candidate_name: str,
    company_name: str,
    assessment_title: str,
    time_limit_minutes: int,
    invite_url: str,
) -> str:
    return (
        f"Hi {candidate_name},\n\n"
        f"{company_name} invited you to take the {assessment_title} assessment.\n"
        f"You have {int(time_limit_minutes)} minutes once you start.\n\n"
        f"Start here: {invite_url}\n"
    )
