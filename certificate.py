# certificate.py: one-page PDF certificate for a completed assessment
#
# Required: reportlab

import hashlib
import io
from datetime import date as Date

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

DEFAULT_ISSUER = "Skill Assessment Center"


def certificate_id(user_name: str, subject_id: str, issued_on: Date) -> str:
    b = "|".join((user_name.strip(), subject_id, issued_on.isoformat())).encode("utf-8")
    return issued_on.strftime("%y%m%d") + "-" + hashlib.sha1(b).hexdigest()[:8].upper()


def subject_title(subject_id: str) -> str:
    return subject_id.replace("_", " ").replace("-", " ").title()


def generate_certificate(
    user_name: str,
    subject_id: str,
    score: int,
    issued_on: Date,
    *,
    issuer: str = DEFAULT_ISSUER,
) -> bytes:
    """Render the certificate and return the PDF bytes."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=landscape(A4))
    W, H = landscape(A4)
    cert_id = certificate_id(user_name, subject_id, issued_on)

    c.setTitle(f"Certificate - {subject_title(subject_id)}")
    c.setAuthor(issuer)

    # Borders
    c.setLineWidth(4); c.rect(1*cm, 1*cm, W-2*cm, H-2*cm)
    c.setLineWidth(1); c.rect(1.4*cm, 1.4*cm, W-2.8*cm, H-2.8*cm)

    c.setFont("Helvetica-Bold", 30)
    c.drawCentredString(W/2, H-4.5*cm, "CERTIFICATE OF ACHIEVEMENT")

    c.setFont("Helvetica", 13)
    c.drawCentredString(W/2, H-5.6*cm, issuer)

    c.setFont("Helvetica", 11)
    c.drawCentredString(W/2, H-6.5*cm, f"Certificate No: {cert_id}")

    c.setFont("Helvetica-Oblique", 13)
    c.drawCentredString(W/2, H-8.6*cm, "This certifies that")

    c.setFont("Helvetica-Bold", 24)
    c.drawCentredString(W/2, H-10.0*cm, user_name or "Participant")

    c.setFont("Helvetica", 14)
    c.drawCentredString(W/2, H-11.4*cm, f"completed the {subject_title(subject_id)} skill assessment")
    c.drawCentredString(W/2, H-12.4*cm, f"with a score of {score}%")

    c.setFont("Helvetica-Oblique", 11)
    c.drawCentredString(W/2, H-13.6*cm, f"Date: {issued_on.strftime('%Y-%m-%d')}")

    # Signature
    c.line(W/2 - 5*cm, 3.4*cm, W/2 + 5*cm, 3.4*cm)
    c.setFont("Helvetica", 10)
    c.drawCentredString(W/2, 2.8*cm, issuer)

    c.showPage(); c.save()
    return buf.getvalue()
