"""
tests/test_email_tasks.py
Tests for the account email templates.
"""

import tasks.email_tasks as email_tasks


def test_verification_email_escapes_first_name(monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_tasks, "_send_email", lambda to, subject, body, link: sent.append(body) or True
    )

    email_tasks.send_verification_email("eve@lycee-exemple.fr", "<script>alert(1)</script>", "tok")

    assert len(sent) == 1
    assert "<script>" not in sent[0]
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in sent[0]
    assert "verify-email?token=tok" in sent[0]


def test_password_reset_email_escapes_first_name(monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_tasks, "_send_email", lambda to, subject, body, link: sent.append(body) or True
    )

    email_tasks.send_password_reset_email("eve@lycee-exemple.fr", 'Eve" onmouseover="x', "tok")

    assert 'onmouseover="x' not in sent[0]
    assert "Eve&quot; onmouseover=&quot;x" in sent[0]
