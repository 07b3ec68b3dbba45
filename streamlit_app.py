"""
Streamlit Web Interface for PII Shield
Run with: streamlit run streamlit_app.py
"""

import asyncio

import pandas as pd
import streamlit as st

from job_orchestrator import JobState, PipelineOrchestrator
from ocr_engines import build_ocr_engine
from pii_pipeline import InputRejected, OCR_ENGINES, PII_PATTERNS, ShieldConfig

# ============================================
# PAGE CONFIGURATION
# ============================================

st.set_page_config(
    page_title="PII Shield",
    page_icon="🛡️",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .main-header { font-size: 2.2rem; font-weight: 700; color: #2E7D32; text-align: center; }
    .sub-header { color: #555; text-align: center; margin-bottom: 1.5rem; }
    .pii-badge { display: inline-block; padding: 2px 8px; margin: 2px; border-radius: 10px; color: #fff; font-size: 0.8rem; }
</style>
""", unsafe_allow_html=True)

UPLOAD_TYPES = ['jpg', 'jpeg', 'png', 'gif', 'bmp', 'webp']

# ============================================
# INITIALIZE SESSION STATE
# ============================================

if 'orchestrator' not in st.session_state:
    st.session_state.orchestrator = None
if 'engine_key' not in st.session_state:
    st.session_state.engine_key = None
if 'original_bytes' not in st.session_state:
    st.session_state.original_bytes = None

# ============================================
# SIDEBAR - CONFIGURATION
# ============================================

base_config = ShieldConfig.from_env()

with st.sidebar:
    st.title("Configuration")
    st.markdown("---")

    st.subheader("OCR Engine")
    engines = list(OCR_ENGINES)
    ocr_engine = st.selectbox(
        "Select OCR Engine",
        engines,
        index=engines.index(base_config.ocr_engine),
        help="Tesseract runs locally; EasyOCR and Azure need their optional extras"
    )

    st.subheader("Matching")
    cross_word = st.checkbox(
        "Match names across OCR words",
        value=base_config.allow_cross_word_correlation,
        help="Tesseract and Azure return one token per word, so multi-word names are only "
             "masked when this is on; the mask covers the first word of the name"
    )

    st.subheader("Masking")
    color_coded = st.checkbox("Color-coded masks", value=base_config.color_coded_masks)
    mask_opacity = st.slider("Mask opacity", 0.0, 1.0, float(base_config.mask_opacity), 0.05)
    draw_glyph = st.checkbox("Draw lock marker", value=base_config.draw_lock_glyph)

config = ShieldConfig(
    language=base_config.language,
    ocr_engine=ocr_engine,
    tesseract_config=base_config.tesseract_config,
    allow_cross_word_correlation=cross_word,
    mask_opacity=mask_opacity,
    color_coded_masks=color_coded,
    draw_lock_glyph=draw_glyph,
    max_upload_mb=base_config.max_upload_mb,
    output_filename=base_config.output_filename
)

# Rebuild the orchestrator only when settings change; EasyOCR startup is slow
engine_key = (ocr_engine, cross_word, color_coded, mask_opacity, draw_glyph)
if st.session_state.engine_key != engine_key:
    try:
        st.session_state.orchestrator = PipelineOrchestrator(build_ocr_engine(config), config)
        st.session_state.engine_key = engine_key
    except (ImportError, ValueError) as e:
        st.session_state.orchestrator = None
        st.session_state.engine_key = None
        st.sidebar.error(f"Could not start {ocr_engine}: {e}")

orchestrator = st.session_state.orchestrator

# ============================================
# MAIN CONTENT
# ============================================

st.markdown('<p class="main-header">🛡️ PII Shield</p>', unsafe_allow_html=True)
st.markdown(
    '<p class="sub-header">Detect and mask Aadhaar numbers, phone numbers, emails, PAN, '
    'dates of birth and names in document images</p>',
    unsafe_allow_html=True
)

uploaded_file = st.file_uploader(
    "Upload ID Document",
    type=UPLOAD_TYPES,
    help=f"JPG, PNG, GIF, BMP or WEBP (Max {config.max_upload_mb}MB)"
)

if uploaded_file is not None and orchestrator is not None:
    if st.button("Process Document", type="primary"):
        image_bytes = uploaded_file.getvalue()

        if len(image_bytes) > config.max_upload_mb * 1024 * 1024:
            st.error(f"File is larger than {config.max_upload_mb}MB")
        else:
            st.session_state.original_bytes = image_bytes
            progress_bar = st.progress(0, text="Processing Image...")

            def show_progress(job):
                if job.state is JobState.PROCESSING:
                    progress_bar.progress(job.progress, text=f"{job.progress}% complete")

            unsubscribe = orchestrator.subscribe(show_progress)
            try:
                asyncio.run(orchestrator.submit(image_bytes, uploaded_file.type))
            except InputRejected as e:
                st.error(f"Invalid File: {e}")
            finally:
                unsubscribe()
                progress_bar.empty()

# ============================================
# RESULTS
# ============================================

job = orchestrator.current_job if orchestrator is not None else None

if job is not None and job.state is JobState.FAILED:
    st.error("Processing Failed: failed to process the image. Please try again.")
    with st.expander("Details"):
        st.code(str(job.error))

elif job is not None and job.state is JobState.READY:
    st.success(f"Processing Complete: found {len(job.matches)} PII instances in {job.elapsed_ms:.0f}ms")

    col1, col2 = st.columns([1, 1])

    with col1:
        show_masked = st.toggle("Show masked image", value=True)
        if show_masked:
            st.image(job.masked_image, caption="Masked Image", use_container_width=True)
        elif st.session_state.original_bytes is not None:
            st.image(st.session_state.original_bytes, caption="Original Image", use_container_width=True)

        st.download_button(
            label="Download Masked Image",
            data=job.masked_image,
            file_name=config.output_filename,
            mime="image/png"
        )

        if config.color_coded_masks:
            st.subheader("Mask Color Legend")
            badges = "".join(
                f'<span class="pii-badge" style="background-color: {p.color};">{p.label}</span>'
                for p in PII_PATTERNS
            )
            st.markdown(badges, unsafe_allow_html=True)

    with col2:
        st.subheader(f"🔍 PII Detected ({len(job.matches)})")
        if job.matches:
            pii_df = pd.DataFrame([
                {
                    'Type': m.category,
                    'Value': m.matched_text,
                    'Confidence': f"{round(m.confidence)}%"
                }
                for m in job.matches
            ])
            st.dataframe(pii_df, use_container_width=True, hide_index=True)
        else:
            st.info("No PII detected in this image.")

        if job.extracted_text:
            st.subheader("📋 Extracted Text")
            st.text_area("Extracted Text", job.extracted_text, height=250, disabled=True,
                         label_visibility="collapsed")

elif orchestrator is None:
    st.warning("Select a working OCR engine in the sidebar")

# ============================================
# FOOTER
# ============================================

st.markdown("---")
st.markdown("""
<div style="text-align: center; color: #666; font-size: 0.9rem;">
    <p>PII Shield | Built with Streamlit</p>
    <p>Supports: Aadhaar, Phone Numbers, Email, PAN, Dates of Birth, Names</p>
</div>
""", unsafe_allow_html=True)
