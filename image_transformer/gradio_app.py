"""
Image Transformer - Main Gradio Application

This is the entry point for the image transformation interface.

Features:
- Image selection with size/type validation and preview
- Optional text prompt
- Workflow execution on Flowscale with simulated progress
- Cancel of the running generation
- Past runs gallery (loaded on page open, refreshed after each success)
"""

import logging
from typing import List, Optional, Tuple

import gradio as gr

from .config import (
    GRADIO_PORTS,
    PROJECT_DESCRIPTION,
    PROJECT_NAME,
    UI_POLL_INTERVAL,
    VERSION,
    FlowscaleSettings,
    configure_logging,
)
from .core.flowscale_client import FlowscaleClient
from .core.run_controller import RunController, RunSnapshot, RunState
from .exceptions import ConfigurationError, InvalidInputError
from .utils.image_utils import build_pending_input, load_upload

logger = logging.getLogger(__name__)


class ImageTransformerApp:
    """
    Main Gradio application for Image Transformer

    Composition root: builds the Flowscale client from settings and injects
    it into the run controller.
    """

    def __init__(self, settings: FlowscaleSettings, client: Optional[FlowscaleClient] = None):
        """
        Initialize the application

        Args:
            settings: Flowscale credentials and workflow identifiers
            client: Pre-built client (a new one is created from settings if None)
        """
        self.settings = settings
        self.client = client or FlowscaleClient(settings.api_key, settings.api_url)
        self.controller = RunController(
            self.client,
            settings.workflow_id,
            image_slot=settings.image_slot,
            prompt_slot=settings.prompt_slot,
            group_id=settings.group_id
        )

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def select_image(self, image_path: Optional[str]) -> Tuple[Optional[str], Optional[str], str]:
        """
        Validate a newly selected file

        Returns:
            Tuple of (kept file path, preview path, status message)
        """
        if not image_path:
            return None, None, ""

        try:
            upload = load_upload(image_path)
        except InvalidInputError as e:
            logger.info("Rejected selected file: %s", e)
            gr.Warning(str(e))
            return None, None, f"⚠️ {e}"

        return image_path, str(upload.path), ""

    def remove_image(self) -> Tuple[None, str]:
        """Forget the selected file"""
        return None, ""

    async def transform_image(
        self,
        image_path: Optional[str],
        prompt_text: str
    ) -> Tuple[str, Optional[str], List[Tuple[str, str]]]:
        """
        Submit the selected image and prompt, and wait for the run to settle

        Returns:
            Tuple of (status_message, output_image_url, history_gallery)
        """
        try:
            pending = build_pending_input(image_path, prompt_text)
            state = await self.controller.submit(pending)
        except InvalidInputError as e:
            gr.Warning(str(e))
            return f"⚠️ {e}", None, self.history_gallery_items()

        snapshot = self.controller.snapshot()
        output = snapshot.output_image_url if state is RunState.SUCCEEDED else None
        return self._format_status(snapshot), output, self.history_gallery_items()

    async def cancel_generation(self) -> str:
        """Cancel the running generation (no-op when idle)"""
        logger.info("Cancel requested by user")
        await self.controller.cancel()
        return self._format_status(self.controller.snapshot())

    async def load_history(self) -> List[Tuple[str, str]]:
        """Fetch past runs for the gallery"""
        await self.controller.refresh_history()
        return self.history_gallery_items()

    def history_gallery_items(self) -> List[Tuple[str, str]]:
        """Flatten run history into (url, caption) gallery entries"""
        items = []
        for run in self.controller.history.runs:
            for output in run.outputs:
                if output.url:
                    items.append((output.url, f"{output.filename} ({run.status})"))
        return items

    def get_progress_update(self, image_path: Optional[str]):
        """
        Poll controller state for the progress read-out and button states

        Returns:
            Tuple of (progress_markdown, transform_button_update, cancel_button_update)
        """
        snapshot = self.controller.snapshot()
        if snapshot.is_busy:
            progress_text = f"⏳ **Generating...** {snapshot.progress}%"
        elif snapshot.state is RunState.SUCCEEDED:
            progress_text = f"✅ {snapshot.progress}%"
        else:
            progress_text = ""

        transform_update = gr.update(
            interactive=bool(image_path) and not snapshot.is_busy,
            value="Processing..." if snapshot.is_busy else "Transform Image"
        )
        cancel_update = gr.update(visible=snapshot.is_busy)
        return progress_text, transform_update, cancel_update

    @staticmethod
    def _format_status(snapshot: RunSnapshot) -> str:
        if snapshot.state is RunState.SUCCEEDED:
            return f"✅ **{snapshot.message}**"
        if snapshot.state is RunState.FAILED:
            return f"❌ **Generation Failed**\n\n{snapshot.message}"
        if snapshot.state is RunState.CANCELLED:
            return f"⏹️ **{snapshot.message}**"
        if snapshot.state is RunState.AWAITING_RESULT:
            return "⏳ **Generating...**"
        return ""

    # ------------------------------------------------------------------
    # Interface
    # ------------------------------------------------------------------

    def create_interface(self) -> gr.Blocks:
        """
        Create the main Gradio interface

        Returns:
            Gradio Blocks application
        """
        with gr.Blocks(
            title=PROJECT_NAME,
            theme=gr.themes.Default()
        ) as app:
            gr.Markdown(f"""
            # {PROJECT_NAME}
            {PROJECT_DESCRIPTION}

            **Version:** {VERSION}
            """)

            with gr.Row():
                # Input Section
                with gr.Column(scale=1):
                    gr.Markdown("### Input Image")
                    prompt_text = gr.Textbox(
                        label="Prompt",
                        placeholder="Enter your prompt...",
                        lines=1
                    )
                    image_file = gr.File(
                        label="Drag & drop an image here, or click to select",
                        file_types=[".png", ".jpg", ".jpeg", ".gif"],
                        file_count="single",
                        type="filepath"
                    )
                    gr.Markdown("Supports PNG, JPG, GIF up to 10MB")
                    preview_image = gr.Image(
                        label="Preview",
                        type="filepath",
                        interactive=False
                    )

                # Output Section
                with gr.Column(scale=1):
                    gr.Markdown("### Generated Image")
                    output_image = gr.Image(
                        label="Generated image will appear here",
                        interactive=False
                    )
                    progress_status = gr.Markdown("")
                    execution_status = gr.Markdown("")
                    with gr.Row():
                        transform_btn = gr.Button(
                            "Transform Image",
                            variant="primary",
                            interactive=False
                        )
                        cancel_btn = gr.Button(
                            "Cancel",
                            variant="stop",
                            visible=False
                        )

            with gr.Accordion("Past Runs", open=False):
                refresh_history_btn = gr.Button("Refresh", size="sm")
                history_gallery = gr.Gallery(
                    label="Previous outputs",
                    columns=4,
                    height="auto"
                )

            # ============================================================
            # Event Handlers
            # ============================================================

            image_file.upload(
                fn=self.select_image,
                inputs=[image_file],
                outputs=[image_file, preview_image, execution_status]
            )

            image_file.clear(
                fn=self.remove_image,
                inputs=[],
                outputs=[preview_image, execution_status]
            )

            transform_btn.click(
                fn=self.transform_image,
                inputs=[image_file, prompt_text],
                outputs=[execution_status, output_image, history_gallery]
            )

            cancel_btn.click(
                fn=self.cancel_generation,
                inputs=[],
                outputs=[execution_status]
            )

            refresh_history_btn.click(
                fn=self.load_history,
                inputs=[],
                outputs=[history_gallery]
            )

            # Fetch past runs when the page opens
            app.load(
                fn=self.load_history,
                inputs=[],
                outputs=[history_gallery]
            )

            # Progress polling
            progress_timer = gr.Timer(UI_POLL_INTERVAL, active=True)
            progress_timer.tick(
                fn=self.get_progress_update,
                inputs=[image_file],
                outputs=[progress_status, transform_btn, cancel_btn]
            )

        return app

    def launch(self, **kwargs) -> int:
        """
        Serve the interface on the configured host

        Uses the configured port when one is set, otherwise the first free
        port in GRADIO_PORTS.

        Args:
            **kwargs: Additional arguments passed to gr.Blocks.launch()

        Returns:
            The port the server ran on
        """
        app = self.create_interface()
        host = self.settings.server_host
        ports = [self.settings.server_port] if self.settings.server_port else GRADIO_PORTS

        for port in ports:
            try:
                logger.info("Serving %s on http://%s:%d", PROJECT_NAME, host, port)
                app.launch(server_name=host, server_port=port, share=False, **kwargs)
                return port
            except OSError as e:
                logger.warning("Port %d unavailable: %s", port, e)

        raise RuntimeError(f"No free port on {host}; tried {ports}")


def main():
    """
    Main entry point for standalone execution

    Refuses to start when any required setting is missing.
    """
    configure_logging()

    try:
        settings = FlowscaleSettings.from_env()
    except ConfigurationError as e:
        logger.critical("%s", e)
        raise SystemExit(f"{PROJECT_NAME}: {e}") from e

    logger.info("%s %s starting (workflow %s)", PROJECT_NAME, VERSION, settings.workflow_id)
    app = ImageTransformerApp(settings)
    try:
        app.launch(inbrowser=True)
    finally:
        app.client.close()


if __name__ == "__main__":
    main()
