"""FastAPI integration serving OCSP, the CRL and the CA chain over HTTP."""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Optional

from cryptography.x509 import ocsp
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from ..authority.ca import CertificateAuthority
from ..core.errors import NotBootstrappedError, SignerUnusableError
from ..issuer.ocsp import OCSPResponder, unsuccessful

logger = logging.getLogger(__name__)

OCSP_REQUEST = "application/ocsp-request"
OCSP_RESPONSE = "application/ocsp-response"
PKIX_CRL = "application/pkix-crl"
PEM_CHAIN = "application/pem-certificate-chain"


class OCSPService:
    """The network-facing OCSP responder, started and stopped explicitly."""

    def __init__(self, authority: CertificateAuthority):
        """Initialize service.

        Args:
            authority: Certificate authority whose OCSP signer answers requests
        """
        self.authority = authority
        self._responder: Optional[OCSPResponder] = None

    @property
    def running(self) -> bool:
        return self._responder is not None and self._responder.running

    def start(self) -> None:
        """Start answering with the authority's current OCSP signer.

        Raises:
            NotBootstrappedError: If no OCSP signer has been set up
            SignerUnusableError: If the signer certificate is expired or revoked
        """
        responder = self.authority.responder()
        responder.start()
        self._responder = responder

    def stop(self) -> None:
        if self._responder is not None:
            self._responder.stop()
        self._responder = None

    def respond(self, request_der: bytes) -> bytes:
        responder = self.authority.responder()
        if responder is not self._responder or not responder.running:
            # The signer was replaced or stopped behind the service's back
            self._responder = None
            raise SignerUnusableError("OCSP service is not running")
        return responder.respond(request_der)


def create_app(
    authority: CertificateAuthority,
    service: Optional[OCSPService] = None,
    autostart: bool = False,
) -> FastAPI:
    """Build an app exposing the authority's revocation endpoints.

    Args:
        authority: Operational certificate authority
        service: OCSP service (created if not provided); kept on ``app.state``
        autostart: Start the OCSP service when the app starts

    Returns:
        FastAPI application
    """
    service = service or OCSPService(authority)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            service.start()
        try:
            yield
        finally:
            service.stop()

    app = FastAPI(title="open-ca", lifespan=lifespan)
    app.state.authority = authority
    app.state.ocsp_service = service

    @app.exception_handler(NotBootstrappedError)
    async def not_bootstrapped(request: Request, exc: NotBootstrappedError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def answer(request_der: bytes) -> Response:
        if not service.running:
            raise HTTPException(status_code=503, detail="OCSP service is not running")
        try:
            content = service.respond(request_der)
        except SignerUnusableError as e:
            logger.warning("OCSP request refused: %s", e)
            raise HTTPException(status_code=503, detail=str(e)) from e
        return Response(content=content, media_type=OCSP_RESPONSE)

    @app.post("/ocsp")
    async def ocsp_post(request: Request) -> Response:
        content_type = request.headers.get("content-type", "").split(";")[0].strip()
        if content_type and content_type != OCSP_REQUEST:
            raise HTTPException(status_code=415, detail=f"Expected {OCSP_REQUEST}")
        return answer(await request.body())

    @app.get("/ocsp/{encoded:path}")
    async def ocsp_get(encoded: str) -> Response:
        try:
            request_der = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            if not service.running:
                raise HTTPException(status_code=503, detail="OCSP service is not running")
            return Response(
                content=unsuccessful(ocsp.OCSPResponseStatus.MALFORMED_REQUEST),
                media_type=OCSP_RESPONSE,
            )
        return answer(request_der)

    @app.get("/crl")
    async def crl() -> Response:
        artifact = authority.latest_crl()
        if artifact is None:
            raise HTTPException(status_code=404, detail="No CRL has been published")
        return Response(content=artifact.der, media_type=PKIX_CRL)

    @app.get("/ca-chain")
    async def ca_chain(include_root: bool = True) -> Response:
        return Response(content=authority.chain_pem(include_root), media_type=PEM_CHAIN)

    return app
