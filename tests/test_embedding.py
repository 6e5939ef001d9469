"""Tests for the embedding model wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np

from lifedigest.embedding.encoder import (
    DEFAULT_MODEL,
    EmbeddingConfig,
    EmbeddingModel,
    detect_device,
)


class TestDeviceDetection:
    """Test accelerator detection."""

    def test_no_torch(self) -> None:
        """Should return None if torch is not importable."""
        with patch.dict("sys.modules", {"torch": None}):
            assert detect_device() is None

    def test_cuda(self) -> None:
        torch = MagicMock()
        torch.cuda.is_available.return_value = True
        torch.cuda.get_device_name.return_value = "NVIDIA RTX 3090"
        with patch.dict("sys.modules", {"torch": torch}):
            assert detect_device() == "cuda"

    def test_mps(self) -> None:
        torch = MagicMock()
        torch.cuda.is_available.return_value = False
        torch.backends.mps.is_available.return_value = True
        with patch.dict("sys.modules", {"torch": torch}):
            assert detect_device() == "mps"

    def test_cpu(self) -> None:
        torch = MagicMock()
        torch.cuda.is_available.return_value = False
        torch.backends.mps.is_available.return_value = False
        with patch.dict("sys.modules", {"torch": torch}):
            assert detect_device() is None


class TestEmbeddingConfig:
    def test_default_config(self) -> None:
        config = EmbeddingConfig()
        assert config.model_name == DEFAULT_MODEL
        assert config.batch_size == 16
        assert config.normalize is True
        assert config.device is None


class TestEmbeddingModel:
    """EmbeddingModel with the transformer mocked out."""

    @patch("lifedigest.embedding.encoder.SentenceTransformer")
    def test_loads_model_and_dimension(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 384

        model = EmbeddingModel(EmbeddingConfig(model_name="tiny", device="cpu"))

        mock_st.assert_called_once_with("tiny", device="cpu")
        assert model.dimension == 384

    @patch("lifedigest.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st: MagicMock) -> None:
        instance = mock_st.return_value
        instance.get_sentence_embedding_dimension.return_value = 2
        instance.encode.return_value = np.array([[1.0, 0.0], [0.0, 1.0]], dtype="float64")
        model = EmbeddingModel(EmbeddingConfig(device="cpu", batch_size=4))

        embeddings = model.embed(text for text in ["a", "b"])

        assert embeddings.dtype == np.float32
        assert embeddings.shape == (2, 2)
        args, kwargs = instance.encode.call_args
        assert args == (["a", "b"],)
        assert kwargs["batch_size"] == 4
        assert kwargs["normalize_embeddings"] is True

    @patch("lifedigest.embedding.encoder.SentenceTransformer")
    def test_embed_query(self, mock_st: MagicMock) -> None:
        instance = mock_st.return_value
        instance.get_sentence_embedding_dimension.return_value = 3
        instance.encode.return_value = np.array([[0.1, 0.2, 0.3]], dtype="float32")
        model = EmbeddingModel(EmbeddingConfig(device="cpu"))

        vector = model.embed_query("hello")

        assert vector.shape == (3,)

    @patch("lifedigest.embedding.encoder.detect_device", return_value="mps")
    @patch("lifedigest.embedding.encoder.SentenceTransformer")
    def test_device_autodetected(self, mock_st: MagicMock, mock_detect: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 8

        model = EmbeddingModel()

        assert model.config.device == "mps"
        assert mock_st.call_args.kwargs["device"] == "mps"
