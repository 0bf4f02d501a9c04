"""Broker server: the gRPC endpoint plus the auxiliary HTTP endpoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import grpc

from .auxiliary import AuxiliaryServer
from .controller import MesgController
from .metrics import MetricsWriter
from .service import MesgService
from .storage import Storage
from .transport import MesgGrpcService, build_handler

log = logging.getLogger(__name__)


@dataclass
class MesgServerOptions:
    db_path: str = ""
    port: int = 35000
    metric_port: int = 35001
    host: str = "0.0.0.0"


class MesgServer:
    """Owns the storage, controller and both listeners."""

    def __init__(self) -> None:
        self.storage: Optional[Storage] = None
        self.controller: Optional[MesgController] = None
        self.auxiliary: Optional[AuxiliaryServer] = None
        self.port: Optional[int] = None
        self._grpc_server: Optional[grpc.aio.Server] = None

    async def start(self, options: MesgServerOptions) -> None:
        """Start listening; returns once both servers accept connections."""
        metrics = MetricsWriter()
        self.auxiliary = AuxiliaryServer(options.metric_port, metrics, host=options.host)
        self.auxiliary.start()

        self.storage = await Storage.create(options.db_path)
        self.controller = MesgController(self.storage, metrics)
        self.controller.start_jobs()
        servicer = MesgGrpcService(MesgService(self.controller))

        server = grpc.aio.server()
        server.add_generic_rpc_handlers((build_handler(servicer),))
        port = server.add_insecure_port(f"{options.host}:{options.port}")
        if not port:
            raise OSError(f"cannot bind {options.host}:{options.port}")
        await server.start()
        self._grpc_server = server
        self.port = port
        log.info("listening: %s:%s", options.host, port)

    async def wait(self) -> None:
        """Wait until the gRPC server terminates."""
        server = self._grpc_server
        if server is not None:
            await server.wait_for_termination()

    async def stop(self) -> None:
        """Stop both servers and release every resource; safe to call twice."""
        server, self._grpc_server = self._grpc_server, None
        self.port = None
        if server is not None:
            await server.stop(None)
        controller, self.controller = self.controller, None
        if controller is not None:
            controller.close()
        storage, self.storage = self.storage, None
        if storage is not None:
            storage.close()
        auxiliary, self.auxiliary = self.auxiliary, None
        if auxiliary is not None:
            await asyncio.to_thread(auxiliary.stop)

    async def run(self, options: MesgServerOptions) -> None:
        """Start, serve until terminated, then clean up."""
        try:
            await self.start(options)
            await self.wait()
        finally:
            await self.stop()