"""
Image Transformer - Gradio front end for a hosted Flowscale image workflow

Launch with ``python -m image_transformer`` or the ``image-transformer`` script.
"""

from .config import VERSION, PROJECT_NAME

# ============================================================================
# Package Metadata
# ============================================================================

__version__ = VERSION
__description__ = "Transform images with a hosted Flowscale workflow"


# ============================================================================
# Manual Launch Function
# ============================================================================

def launch_gradio_interface():
    """
    Launch the Gradio interface using settings from the environment

    Usage:
        >>> import image_transformer
        >>> image_transformer.launch_gradio_interface()
    """
    from .gradio_app import main
    main()


__all__ = [
    "launch_gradio_interface",
    "PROJECT_NAME",
    "__version__",
]
