from __future__ import annotations

import secrets

from docker.errors import NotFound
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from onc import db
from onc.adapter import NetworkAdapter
from onc.api_models import CidrRequest, ContainerOptsRequest, ContainerRemovedRequest, NodeInfo
from onc.docker_ops import client as docker_client, docker_available
from onc.events import ContainerRemoved, IpamReady, NodeInfoUpdated
from onc.ipam import IpamError
from onc.runtime import ImagesNotReady
from onc.settings import settings

app = FastAPI(title="Overlay Network Controller")
security = HTTPBasic()


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    user_ok = secrets.compare_digest(credentials.username, settings.api_user)
    pass_ok = secrets.compare_digest(credentials.password, settings.api_password)
    if not (user_ok and pass_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def get_adapter(request: Request) -> NetworkAdapter:
    adapter = getattr(request.app.state, "adapter", None)
    if adapter is None:
        raise HTTPException(status_code=503, detail="network adapter not initialized")
    return adapter


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    adapter = NetworkAdapter(docker_client())
    app.state.adapter = adapter
    adapter.run_background()


@app.on_event("shutdown")
def shutdown() -> None:
    adapter = getattr(app.state, "adapter", None)
    if adapter is not None:
        adapter.stop()


@app.get("/status")
def get_status(adapter: NetworkAdapter = Depends(get_adapter), username: str = Depends(get_current_username)):
    snap = adapter.state.snapshot()
    snap["docker"] = docker_available(adapter.client)
    handle = adapter.router.fetch() if snap["docker"] else None
    snap["router_running"] = bool(handle and handle.running)
    snap["router_image"] = handle.image if handle else None
    return snap


@app.get("/events")
def get_events(limit: int = 50, level: str | None = None, username: str = Depends(get_current_username)):
    return db.latest_events(limit=max(1, min(1000, limit)), level=level)


@app.post("/node-info", status_code=status.HTTP_202_ACCEPTED)
def post_node_info(
    info: NodeInfo, adapter: NetworkAdapter = Depends(get_adapter), username: str = Depends(get_current_username)
):
    adapter.publish(NodeInfoUpdated(info))
    return {"queued": "node_info"}


@app.post("/ipam/ready", status_code=status.HTTP_202_ACCEPTED)
def post_ipam_ready(adapter: NetworkAdapter = Depends(get_adapter), username: str = Depends(get_current_username)):
    adapter.publish(IpamReady())
    return {"queued": "ipam_ready"}


@app.post("/containers/removed", status_code=status.HTTP_202_ACCEPTED)
def post_container_removed(
    req: ContainerRemovedRequest,
    adapter: NetworkAdapter = Depends(get_adapter),
    username: str = Depends(get_current_username),
):
    adapter.publish(ContainerRemoved(container_id=req.id, attributes=req.attributes))
    return {"queued": "container_removed"}


@app.post("/containers/{container_id}/attach")
def post_attach(
    container_id: str,
    req: CidrRequest,
    adapter: NetworkAdapter = Depends(get_adapter),
    username: str = Depends(get_current_username),
):
    if not adapter.attach_container(container_id, req.cidr):
        raise HTTPException(status_code=502, detail=f"weave attach failed for {container_id}")
    return {"container_id": container_id, "cidr": req.cidr}


@app.post("/containers/{container_id}/migrate")
def post_migrate(
    container_id: str,
    req: CidrRequest,
    adapter: NetworkAdapter = Depends(get_adapter),
    username: str = Depends(get_current_username),
):
    if not adapter.migrate_container(container_id, req.cidr):
        raise HTTPException(status_code=502, detail=f"weave migrate failed for {container_id}")
    return {"container_id": container_id, "cidr": req.cidr}


@app.post("/container-opts")
def post_container_opts(
    req: ContainerOptsRequest,
    adapter: NetworkAdapter = Depends(get_adapter),
    username: str = Depends(get_current_username),
):
    try:
        opts = adapter.modify_create_opts(req.opts)
        if req.overlay:
            opts = adapter.modify_network_opts(opts)
    except (IpamError, ImagesNotReady) as e:
        raise HTTPException(status_code=503, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except KeyError as e:
        raise HTTPException(status_code=422, detail=f"missing option {e}")
    return opts
