# services/drive_service/app/main.py

import gradio as gr
import fastapi
from fastapi.responses import RedirectResponse
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional
from core.config import settings
from core.auth import AuthSession, AuthSessionRegistry
from core.chat_client import ChatClient
from core.models import HealthResponse
from .state import BrowserState, BrowserTab
from .views import DriveViews, FILE_COLUMNS, FOLDER_COLUMNS

# Setup logger
logger = logging.getLogger("Drive_Core").getChild("DriveService")

SIGNIN_FAILURE_PATH = f"{settings.UI_PATH}?view=signin&error=auth_callback_failed"


def _log_auth_change(event: str, user) -> None:
    logger.info(f"Auth event '{event}': views will re-fetch on next load (user={user.id if user else None})")


# One auth session per browser; handlers are stateless and shared
sessions = AuthSessionRegistry(on_auth_change=_log_auth_change)
chat_client = ChatClient()
views = DriveViews(chat_client)


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    logger.info("Drive service lifespan startup.")

    yield # Application runs here

    # Shutdown: unsubscribe every browser session and close the chat HTTP client
    logger.info("Drive service lifespan shutdown: cleaning up resources.")
    await sessions.close_all()
    await chat_client.aclose()


def session_key(request: gr.Request) -> str:
    """Browser session cookie, falling back to Gradio's per-tab hash when cookies are unavailable."""
    raw = getattr(request, "request", None)
    cookies = getattr(raw, "cookies", None) or {}
    return cookies.get(settings.SESSION_COOKIE_NAME) or request.session_hash


async def session_for(request: gr.Request) -> AuthSession:
    return await sessions.get(session_key(request))


# --- Gradio glue: resolve the caller's session, unpack (state, notice) pairs ---

async def _refresh(state: BrowserState, notice: str, query: Optional[str] = None):
    return (
        state,
        views.render_files(state, query),
        views.render_folders(state),
        views.render_location(state),
        notice,
    )

async def load_ui(state, query, request: gr.Request):
    session = await session_for(request)
    state, notice = await views.load(session, state)
    return (*(await _refresh(state, notice, query)), views.session_summary(session))

async def tab_ui(state, tab, query, request: gr.Request):
    state, notice = await views.change_tab(await session_for(request), state, tab)
    return await _refresh(state, notice, query)

async def open_folder_ui(state, folder_id, query, request: gr.Request):
    state, notice = await views.open_folder(await session_for(request), state, (folder_id or "").strip())
    return await _refresh(state, notice, query)

async def back_ui(state, query, request: gr.Request):
    state, notice = await views.go_back(await session_for(request), state)
    return await _refresh(state, notice, query)

async def upload_ui(state, file_paths, query, request: gr.Request):
    state, notice = await views.upload(await session_for(request), state, file_paths)
    return (*(await _refresh(state, notice, query)), gr.update(value=None))

async def star_ui(state, file_id, query, request: gr.Request):
    state, notice = await views.toggle_star(await session_for(request), state, (file_id or "").strip())
    return await _refresh(state, notice, query)

async def rename_ui(state, file_id, new_name, query, request: gr.Request):
    state, notice = await views.rename(await session_for(request), state, (file_id or "").strip(), new_name)
    return await _refresh(state, notice, query)

async def delete_ui(state, file_id, query, request: gr.Request):
    state, notice = await views.delete(await session_for(request), state, (file_id or "").strip())
    return await _refresh(state, notice, query)

async def create_folder_ui(state, name, query, request: gr.Request):
    state, notice = await views.create_folder(await session_for(request), state, name)
    return await _refresh(state, notice, query)

async def download_ui(state, file_id, request: gr.Request):
    return await views.download_link(await session_for(request), state, (file_id or "").strip())

def search_ui(state, query):
    return views.render_files(state, query)

async def dashboard_ui(request: gr.Request):
    return await views.dashboard(await session_for(request))

async def sign_in_ui(email, password, request: gr.Request):
    session = await session_for(request)
    return await views.sign_in(session, email, password), views.session_summary(session)

async def google_ui(request: gr.Request):
    return await views.sign_in_with_google(await session_for(request))

async def sign_up_ui(email, password, confirm_password, request: gr.Request):
    return await views.sign_up(await session_for(request), email, password, confirm_password)

async def reset_ui(email, request: gr.Request):
    return await views.reset_password(await session_for(request), email)

async def sign_out_ui(query, request: gr.Request):
    session = await session_for(request)
    state, notice = await views.sign_out(session)
    return (*(await _refresh(state, notice, query)), views.session_summary(session))

async def chat_ui(message, history, request: gr.Request):
    return await views.chat(await session_for(request), message, history)

# --- Build Gradio Interface ---
with gr.Blocks(theme=gr.themes.Soft(), title="Cloud Drive") as demo:
    gr.Markdown("# Cloud Drive")
    config_banner = gr.Markdown(views.config_banner())
    session_status = gr.Markdown("Not signed in.")
    browser_state = gr.State(BrowserState())
    with gr.Tabs():
        with gr.TabItem("Files"):
            with gr.Row():
                view_tab = gr.Radio(label="View", choices=[t.value for t in BrowserTab], value=BrowserTab.ALL.value)
                search_box = gr.Textbox(label="Search files", placeholder="Filter by name...")
                refresh_button = gr.Button("🔄 Refresh")
            location = gr.Markdown("**My Drive**")
            notice_box = gr.Textbox(label="Status", interactive=False)
            folders_table = gr.Dataframe(headers=FOLDER_COLUMNS, interactive=False, label="Folders")
            with gr.Row():
                folder_id_input = gr.Textbox(label="Folder ID", placeholder="Open a folder by ID")
                open_button = gr.Button("📂 Open"); back_button = gr.Button("⬅️ Back")
                new_folder_name = gr.Textbox(label="New folder name"); create_button = gr.Button("➕ Create Folder")
            files_table = gr.Dataframe(headers=FILE_COLUMNS, interactive=False, label="Files")
            with gr.Row():
                file_id_input = gr.Textbox(label="File ID", placeholder="Select a file by ID")
                star_button = gr.Button("⭐ Star / Unstar"); delete_button = gr.Button("🗑️ Delete", variant="stop")
                download_button = gr.Button("⬇️ Download link")
            with gr.Row():
                rename_input = gr.Textbox(label="New name"); rename_button = gr.Button("✏️ Rename")
            download_link = gr.Markdown()
            with gr.Row():
                upload_input = gr.File(label="Upload files", file_count="multiple", type="filepath")
                upload_button = gr.Button("⬆️ Upload", variant="primary")
        with gr.TabItem("Dashboard"):
            dashboard_button = gr.Button("📊 Refresh Dashboard")
            dashboard_output = gr.Markdown()
            config_button = gr.Button("🔧 Check Configuration")
            config_output = gr.Markdown()
        with gr.TabItem("Account"):
            with gr.Accordion("Sign in", open=True):
                email_input = gr.Textbox(label="Email"); password_input = gr.Textbox(label="Password", type="password")
                with gr.Row():
                    sign_in_button = gr.Button("Sign in", variant="primary"); google_button = gr.Button("Continue with Google")
                    sign_out_button = gr.Button("Sign out")
                auth_output = gr.Markdown()
            with gr.Accordion("Create account", open=False):
                signup_email = gr.Textbox(label="Email"); signup_password = gr.Textbox(label="Password", type="password")
                signup_confirm = gr.Textbox(label="Confirm password", type="password")
                sign_up_button = gr.Button("Sign up"); signup_output = gr.Markdown()
            with gr.Accordion("Forgot password", open=False):
                reset_email = gr.Textbox(label="Email"); reset_button = gr.Button("Send reset link"); reset_output = gr.Markdown()
        with gr.TabItem("Assistant"):
            chatbot = gr.Chatbot(value=views.initial_chat(), type="messages", label="AI Assistant")
            chat_input = gr.Textbox(label="Message", placeholder="Ask me anything...")

    # --- Connect UI elements to functions ---
    refresh_outputs = [browser_state, files_table, folders_table, location, notice_box]
    demo.load(load_ui, inputs=[browser_state, search_box], outputs=refresh_outputs + [session_status])
    refresh_button.click(load_ui, inputs=[browser_state, search_box], outputs=refresh_outputs + [session_status])
    view_tab.change(tab_ui, inputs=[browser_state, view_tab, search_box], outputs=refresh_outputs)
    search_box.change(search_ui, inputs=[browser_state, search_box], outputs=[files_table])
    open_button.click(open_folder_ui, inputs=[browser_state, folder_id_input, search_box], outputs=refresh_outputs)
    back_button.click(back_ui, inputs=[browser_state, search_box], outputs=refresh_outputs)
    create_button.click(create_folder_ui, inputs=[browser_state, new_folder_name, search_box], outputs=refresh_outputs)
    star_button.click(star_ui, inputs=[browser_state, file_id_input, search_box], outputs=refresh_outputs)
    rename_button.click(rename_ui, inputs=[browser_state, file_id_input, rename_input, search_box], outputs=refresh_outputs)
    delete_button.click(delete_ui, inputs=[browser_state, file_id_input, search_box], outputs=refresh_outputs)
    download_button.click(download_ui, inputs=[browser_state, file_id_input], outputs=[download_link])
    upload_button.click(upload_ui, inputs=[browser_state, upload_input, search_box], outputs=refresh_outputs + [upload_input])
    dashboard_button.click(dashboard_ui, inputs=None, outputs=[dashboard_output])
    config_button.click(views.config_status, inputs=None, outputs=[config_output])
    sign_in_button.click(sign_in_ui, inputs=[email_input, password_input], outputs=[auth_output, session_status])
    google_button.click(google_ui, inputs=None, outputs=[auth_output])
    sign_out_button.click(sign_out_ui, inputs=[search_box], outputs=refresh_outputs + [session_status])
    sign_up_button.click(sign_up_ui, inputs=[signup_email, signup_password, signup_confirm], outputs=[signup_output])
    reset_button.click(reset_ui, inputs=[reset_email], outputs=[reset_output])
    chat_input.submit(chat_ui, inputs=[chat_input, chatbot], outputs=[chatbot, chat_input])



# --- FastAPI app: session cookie, health, OAuth callback, mounted Gradio UI ---
app = fastapi.FastAPI(title="Cloud Drive", version="1.0.0", lifespan=lifespan)

@app.middleware("http")
async def ensure_session_cookie(request: fastapi.Request, call_next):
    """Gives every browser a random session id; the UI and the OAuth callback both key on it."""
    response = await call_next(request)
    if settings.SESSION_COOKIE_NAME not in request.cookies:
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            secrets.token_urlsafe(32),
            httponly=True,
            samesite="lax", # sent on the top-level redirect back from the OAuth provider
            secure=settings.APP_BASE_URL.startswith("https://"),
        )
    return response

@app.get("/")
async def root():
    return RedirectResponse(url=settings.UI_PATH, status_code=303)

@app.get("/health", response_model=HealthResponse)
async def health_check():
    configured = settings.backend_configured
    return HealthResponse(
        status="ok" if configured else "degraded",
        backend_configured=configured,
        active_sessions=len(sessions),
        signed_in_sessions=sessions.signed_in_count,
        message=None if configured else "Supabase configuration is missing",
    )

@app.get("/auth/callback")
async def auth_callback(request: fastapi.Request, code: Optional[str] = None, error: Optional[str] = None):
    """
    Completes the OAuth redirect in the session of the browser that started it
    (found by its session cookie) and routes to the UI root, or back to sign-in on failure.
    """
    if error or not code:
        logger.error(f"Auth callback error: {error or 'missing code'}")
        return RedirectResponse(url=SIGNIN_FAILURE_PATH, status_code=303)
    session = sessions.find(request.cookies.get(settings.SESSION_COOKIE_NAME))
    if session is None:
        # The PKCE verifier lives in the originating session's client; nothing to exchange against
        logger.error("Auth callback error: no browser session for this request")
        return RedirectResponse(url=SIGNIN_FAILURE_PATH, status_code=303)
    try:
        user = await session.exchange_code_for_session(code)
    except Exception as e:
        logger.error(f"Auth callback error: {e}")
        return RedirectResponse(url=SIGNIN_FAILURE_PATH, status_code=303)
    if user is None:
        # No session came back; plain sign-in view
        return RedirectResponse(url=f"{settings.UI_PATH}?view=signin", status_code=303)
    logger.info(f"OAuth sign-in completed for {user.email or user.id}")
    return RedirectResponse(url=settings.UI_PATH, status_code=303)

app = gr.mount_gradio_app(app, demo, path=settings.UI_PATH)
