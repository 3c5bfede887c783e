"""
Payment Submission Workflow

Turns a proof-of-payment image and a target bill into a submitted payment:

    read bytes -> encode as a data URI -> POST -> reconcile

The bill is only shown as PendingVerification once the server has accepted
the proof and a reconciliation has picked it up. A failed upload leaves the
bill payable.
"""

import base64
from typing import Optional, Any

from subscription.auth_session import AuthSession
from subscription.exceptions import ValidationError, ProcessingError
from subscription.proof_source import ProofOfPaymentSource
from subscription.reconciliation import ReconciliationEngine
from utils.logger import logger


# Largest proof image accepted for upload
MAX_PROOF_BYTES = 10 * 1024 * 1024


def sniff_image_type(data: bytes) -> Optional[str]:
    """Identify a supported image format from its magic bytes"""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:8] == b"ftyp" and data[8:12] in (b"heic", b"heix", b"mif1", b"msf1", b"hevc"):
        return "image/heic"
    return None


def encode_proof(data: bytes) -> str:
    """
    Encode image bytes as a data URI for transport.

    Raises:
        ProcessingError: if the bytes are empty, too large, or not an image
    """
    if not isinstance(data, (bytes, bytearray)) or not data:
        raise ProcessingError("Proof of payment image is empty or unreadable")
    if len(data) > MAX_PROOF_BYTES:
        raise ProcessingError(
            f"Proof of payment image is too large ({len(data)} bytes, max {MAX_PROOF_BYTES})"
        )

    mime_type = sniff_image_type(bytes(data))
    if mime_type is None:
        raise ProcessingError("Proof of payment is not a supported image (JPEG, PNG, GIF, WEBP, HEIC)")

    payload = base64.b64encode(bytes(data)).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


class PaymentSubmissionWorkflow:
    """Uploads proof of payment for bills"""

    SUBMIT_PROOF_PATH = "/billing/submit-proof"
    PAY_PATH = "/billing/pay"

    def __init__(self, auth_session: AuthSession, engine: ReconciliationEngine):
        self._auth = auth_session
        self._engine = engine

    async def encode_source(self, source: ProofOfPaymentSource) -> str:
        """
        Read and encode a proof source.

        Raises:
            ProcessingError: if the image cannot be read or encoded
        """
        try:
            data = await source.read_bytes()
        except (OSError, ValueError) as e:
            raise ProcessingError(f"Could not read proof of payment: {e}")
        return encode_proof(data)

    async def submit_proof(self, bill_id: str, image_source: Optional[ProofOfPaymentSource]) -> None:
        """
        Submit proof of an out-of-band payment for a bill, then reconcile.

        Raises:
            ValidationError: if no proof is supplied
            ProcessingError: if the image cannot be read or encoded
            ServerRejection: if the server refuses the submission
            TransientError: on network failure
        """
        if image_source is None:
            raise ValidationError("proof required")
        if not bill_id:
            raise ValidationError("bill id required")

        encoded = await self.encode_source(image_source)
        await self._auth.authorized_request(
            "POST",
            self.SUBMIT_PROOF_PATH,
            {"billId": bill_id, "proofOfPaymentBase64": encoded},
        )
        logger.info(f"Proof of payment submitted for bill {bill_id}")
        await self._engine.refresh()

    async def pay_bill(self, bill_id: str, proof: Optional[ProofOfPaymentSource] = None) -> Any:
        """
        Pay a bill. Methods that need no uploaded evidence pass proof=None
        and the field is left out of the request.

        Returns:
            The server response body, which may carry an updated
            subscriptionData
        """
        if not bill_id:
            raise ValidationError("bill id required")

        body = {"billId": bill_id}
        if proof is not None:
            body["proofOfPayment"] = await self.encode_source(proof)

        response = await self._auth.authorized_request("POST", self.PAY_PATH, body)
        logger.info(f"Payment recorded for bill {bill_id}")
        return response
