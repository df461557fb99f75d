"""FastAPI application for the screen-share signaling relay."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response

from .core.config import settings
from .routers import rooms as rooms_router
from .routers import signaling as signaling_router
from .services.signaling import SignalingHub

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the in-memory hub on startup and drain it on shutdown."""

    hub = SignalingHub(settings)
    app.state.hub = hub
    await hub.start()
    logger.info("Signaling hub started (env=%s, eviction=%s)", settings.app_env, settings.room_eviction)
    try:
        yield
    finally:
        await hub.shutdown()
        logger.info("Signaling hub stopped")


app = FastAPI(title="Screen Share Signaling API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(signaling_router.router)
app.include_router(rooms_router.router, prefix="/api", tags=["rooms"])

HTML_PAGE = """<!DOCTYPE html>
<html lang=\"en\">
<head>
    <meta charset=\"UTF-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
    <title>Screen Share</title>
    <script src=\"https://cdn.tailwindcss.com\"></script>
</head>
<body class=\"min-h-screen bg-slate-950 text-slate-100\">
    <main class=\"mx-auto max-w-6xl px-6 py-8\">
        <div class=\"flex flex-wrap items-center justify-between gap-4\">
            <div>
                <h1 class=\"text-xl font-semibold\">Screen Share</h1>
                <p id=\"status\" class=\"text-sm text-slate-400\">Connecting...</p>
            </div>
            <div class=\"flex gap-2\">
                <input id=\"codeInput\" placeholder=\"Room code\" class=\"w-32 rounded-full border border-slate-700 bg-slate-900 px-4 py-2 text-sm uppercase\" />
                <button id=\"joinButton\" class=\"rounded-full border border-slate-600 px-4 py-2 text-sm\">Join</button>
                <button id=\"createButton\" class=\"rounded-full border border-emerald-400/60 px-4 py-2 text-sm text-emerald-300\">New room</button>
                <button id=\"shareButton\" class=\"rounded-full bg-emerald-500 px-4 py-2 text-sm font-semibold text-black disabled:opacity-40\" disabled>Share screen</button>
            </div>
        </div>
        <div class=\"mt-6 grid gap-6 lg:grid-cols-[3fr_1fr]\">
            <section id=\"videos\" class=\"grid gap-4 md:grid-cols-2\"></section>
            <aside class=\"rounded-2xl border border-slate-800 bg-slate-900/60 p-4\">
                <p class=\"text-sm font-semibold\">People <span id=\"count\" class=\"text-slate-500\">0</span></p>
                <ul id=\"people\" class=\"mt-2 space-y-1 text-sm text-slate-400\"></ul>
                <div id=\"chat\" class=\"mt-4 h-64 space-y-1 overflow-y-auto text-sm\"></div>
                <input id=\"chatInput\" placeholder=\"Say something\" class=\"mt-2 w-full rounded-lg border border-slate-700 bg-slate-900 px-3 py-2 text-sm\" />
            </aside>
        </div>
    </main>
    <script>
        const $ = (id) => document.getElementById(id);
        const ICE = { iceServers: [{ urls: 'stun:stun.l.google.com:19302' }] };
        const ws = new WebSocket(`${location.protocol === 'https:' ? 'wss' : 'ws'}://${location.host}/ws`);
        const peers = new Map();
        const people = new Map();
        let selfId = null;
        let roomId = decodeURIComponent(location.pathname.slice(1)) || null;
        let screen = null;

        const send = (type, data) => ws.send(JSON.stringify({ type, data }));
        const setStatus = (text) => { $('status').textContent = text; };

        function renderPeople() {
            $('people').innerHTML = '';
            people.forEach((p) => {
                const li = document.createElement('li');
                li.textContent = `${p.username}${p.isSharing ? ' (sharing)' : ''}`;
                $('people').appendChild(li);
            });
            $('count').textContent = people.size + 1;
        }

        function peer(id) {
            if (peers.has(id)) return peers.get(id);
            const pc = new RTCPeerConnection(ICE);
            pc.onicecandidate = (e) => send('webrtc-ice-candidate', { targetId: id, roomId, payload: e.candidate });
            pc.onnegotiationneeded = async () => {
                await pc.setLocalDescription(await pc.createOffer());
                send('webrtc-offer', { targetId: id, roomId, payload: pc.localDescription });
            };
            pc.ontrack = (e) => {
                let video = $(`v-${id}`);
                if (!video) {
                    video = document.createElement('video');
                    video.id = `v-${id}`;
                    video.autoplay = true;
                    video.playsInline = true;
                    video.className = 'w-full rounded-xl bg-black';
                    $('videos').appendChild(video);
                }
                video.srcObject = e.streams[0];
            };
            if (screen) screen.getTracks().forEach((t) => pc.addTrack(t, screen));
            peers.set(id, pc);
            return pc;
        }

        function dropPeer(id) {
            const pc = peers.get(id);
            if (pc) pc.close();
            peers.delete(id);
            people.delete(id);
            const video = $(`v-${id}`);
            if (video) video.remove();
            renderPeople();
        }

        function joined(code, count) {
            roomId = code;
            history.replaceState(null, '', `/${encodeURIComponent(code)}`);
            $('shareButton').disabled = false;
            setStatus(`Room ${code} - ${count} connected`);
        }

        const handlers = {
            'connected': (d) => { selfId = d.id; setStatus('Connected'); if (roomId) send('join-room', { roomId }); },
            'existing-users': (users) => { users.forEach((u) => { people.set(u.id, u); peer(u.id); }); renderPeople(); },
            'room-info': (d) => joined(d.roomId, d.userCount),
            'room-created': (d) => joined(d.roomCode, d.userCount),
            'room-joined': (d) => joined(d.roomCode, d.userCount),
            'room-error': (d) => setStatus(d.message),
            'user-joined': (d) => { people.set(d.id, { id: d.id, username: d.username, isSharing: false }); peer(d.id); renderPeople(); },
            'user-left': (d) => dropPeer(d.id),
            'user-sharing': (d) => { if (people.has(d.id)) { people.get(d.id).isSharing = d.isSharing; renderPeople(); } },
            'user-updated': (d) => { if (people.has(d.id)) { Object.assign(people.get(d.id), { username: d.username, isSharing: d.isSharing }); renderPeople(); } },
            'chat-message': (d) => {
                const line = document.createElement('p');
                line.textContent = `${new Date(d.timestamp).toLocaleTimeString()} ${d.username}: ${d.message}`;
                $('chat').appendChild(line);
            },
            'webrtc-offer': async (d) => {
                const pc = peer(d.from);
                await pc.setRemoteDescription(d.payload);
                await pc.setLocalDescription(await pc.createAnswer());
                send('webrtc-answer', { targetId: d.from, roomId, payload: pc.localDescription });
            },
            'webrtc-answer': (d) => peer(d.from).setRemoteDescription(d.payload),
            'webrtc-ice-candidate': (d) => { if (d.payload) peer(d.from).addIceCandidate(d.payload); },
            'request-stream': (d) => { if (screen) peer(d.from); },
        };

        ws.onmessage = (event) => {
            const { type, data } = JSON.parse(event.data);
            if (handlers[type]) handlers[type](data);
        };
        ws.onclose = () => setStatus('Disconnected. Reload to reconnect.');

        $('createButton').onclick = () => send('create-room', {});
        $('joinButton').onclick = () => send('join-room', { roomCode: $('codeInput').value });
        $('chatInput').onkeydown = (e) => {
            if (e.key !== 'Enter' || !roomId || !e.target.value.trim()) return;
            send('chat-message', { roomId, message: e.target.value });
            e.target.value = '';
        };
        $('shareButton').onclick = async () => {
            if (screen) {
                screen.getTracks().forEach((t) => t.stop());
                screen = null;
                send('stop-sharing', { roomId });
                return;
            }
            screen = await navigator.mediaDevices.getDisplayMedia({ video: true, audio: false });
            screen.getVideoTracks()[0].onended = () => { screen = null; send('stop-sharing', { roomId }); };
            peers.forEach((pc) => screen.getTracks().forEach((t) => pc.addTrack(t, screen)));
            send('start-sharing', { roomId });
        };
    </script>
</body>
</html>
"""


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/", response_class=HTMLResponse, tags=["meta"])
async def index() -> HTMLResponse:
    """Serve the single-page client."""

    return HTMLResponse(content=HTML_PAGE)


@app.head("/", tags=["meta"])
async def index_head() -> Response:
    """Fast health checks issue HEAD /; answer with 200 to avoid noisy 405s."""

    return Response(status_code=200)


@app.get("/{room_id}", response_class=HTMLResponse, tags=["meta"])
async def room_page(room_id: str) -> HTMLResponse:
    """Serve the client for a room-scoped path; the page joins ``room_id`` itself."""

    _ = room_id
    return HTMLResponse(content=HTML_PAGE)
