"""Vosk model directory checks and download.

`verify_model` gives clearer diagnostics than the native library when a model
folder is missing or incomplete. `download_model` fetches a model archive and
unpacks it next to the other models.
"""
from __future__ import annotations

import os
import zipfile

import requests

DEFAULT_MODEL_URL = "https://alphacephei.com/vosk/models/vosk-model-small-en-us-0.15.zip"

# Layouts differ between model releases; any one of these is enough.
MODEL_FILES = (
    os.path.join('am', 'final.mdl'),
    'final.mdl',
    os.path.join('graph', 'Gr.fst'),
    os.path.join('graph', 'HCLr.fst'),
    os.path.join('ivector', 'final.ie'),
)


def verify_model(path: str) -> None:
    """Basic checks for a VOSK model directory and raise a helpful error if missing."""
    abs_path = os.path.abspath(path)
    if not os.path.isdir(abs_path):
        raise FileNotFoundError(f"Model path does not exist: {abs_path}")

    candidates = [os.path.join(abs_path, name) for name in MODEL_FILES]
    if not any(os.path.exists(c) for c in candidates):
        details = '\n'.join(f" - {c}" for c in candidates)
        raise FileNotFoundError(
            f"No expected model files were found under {abs_path}.\n"
            f"Checked (none present):\n{details}\n"
            "Make sure you downloaded and extracted a VOSK model into this folder."
        )

    conf_path = os.path.join(abs_path, 'conf', 'model.conf')
    if not os.path.exists(conf_path):
        raise FileNotFoundError(
            f"Missing required file: {conf_path}\n"
            "This usually means the model archive wasn't fully extracted."
            " Re-download the model or run: python stt.py download"
        )


def model_dir_for(url: str, dest_dir: str) -> str:
    """Directory a model archive at `url` unpacks to (archive name minus .zip)."""
    name = url.rstrip('/').rsplit('/', 1)[-1]
    if name.endswith('.zip'):
        name = name[:-len('.zip')]
    return os.path.join(dest_dir, name)


def download_model(url: str = DEFAULT_MODEL_URL, dest_dir: str = '.', chunk_size: int = 1 << 16,
                   timeout: float = 60) -> str:
    """Download and unzip a model archive, returning the model directory.

    Nothing is fetched if the model directory already exists. The archive is
    removed after extraction, and also when the transfer fails partway.
    """
    model_dir = model_dir_for(url, dest_dir)
    if os.path.isdir(model_dir):
        print(f"Model already present: {model_dir}")
        return model_dir

    os.makedirs(dest_dir, exist_ok=True)
    zip_path = model_dir + '.zip'
    print(f"Downloading {url}")
    with requests.get(url, stream=True, timeout=timeout) as resp:
        resp.raise_for_status()
        try:
            with open(zip_path, 'wb') as f:
                for chunk in resp.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
        except Exception:
            # drop the partial archive so the next attempt starts clean
            if os.path.exists(zip_path):
                os.remove(zip_path)
            raise

    print(f"Download completed, unzipping into {dest_dir}")
    try:
        with zipfile.ZipFile(zip_path) as archive:
            archive.extractall(dest_dir)
    finally:
        os.remove(zip_path)

    if not os.path.isdir(model_dir):
        raise FileNotFoundError(f"Archive did not contain the expected folder: {model_dir}")
    return model_dir
