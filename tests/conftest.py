"""
Shared fixtures and test utilities for Contract RAG tests.

Provides mock services, sample data, and reusable fixtures so that all tests
can run without API keys, databases, or external network access.
"""

import sys
import json
import time
import hashlib
import threading
from pathlib import Path
from datetime import datetime

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------
SAMPLE_STATUTE = """中华人民共和国环境保护法

第一章 总则

第一条 为保护和改善环境，防治污染和其他公害，保障公众健康，推进生态文明建设，促进经济社会可持续发展，制定本法。

第二条 本法所称环境，是指影响人类生存和发展的各种天然的和经过人工改造的自然因素的总体。

第二章 监督管理

第十二条 每年6月5日为环境日。

第十三条 县级以上人民政府应当将环境保护工作纳入国民经济和社会发展规划。
"""

SHORT_ARTICLE = "第十二条 每年6月5日为环境日。"

SAMPLE_CONTRACT = """软件许可合同

甲方：星河科技有限公司
乙方：云帆信息技术有限公司

第一条 许可范围
甲方授予乙方非独占、不可转让的软件使用许可。

第二条 许可费用
乙方应于每年一月一日前支付许可费人民币五十万元。逾期支付的，每日按应付金额的千分之五支付违约金。

第三条 保密义务
双方应对在履行本合同过程中知悉的对方商业秘密承担保密义务，保密期限为合同终止后五年。

第四条 违约责任
任何一方违反本合同约定的，应赔偿对方因此遭受的全部损失。

第五条 争议解决
因本合同引起的争议，双方应协商解决；协商不成的，提交甲方所在地人民法院诉讼解决。
"""

# ---------------------------------------------------------------------------
# Well-formed model replies, one per report section
# ---------------------------------------------------------------------------
EXECUTIVE_SUMMARY_JSON = json.dumps({
    "contractType": "软件许可合同",
    "riskLevel": "高风险",
    "riskReason": "逾期违约金按日千分之五计算，明显高于司法实践支持的标准",
    "coreRisks": ["违约金比例过高", "争议管辖约定偏向甲方"],
    "actionSuggestions": ["协商将违约金调整为合理比例", "约定双方均可接受的管辖法院"],
}, ensure_ascii=False)

DEEP_ANALYSIS_JSON = json.dumps({
    "legalNature": {
        "contractType": "软件许可合同",
        "governingLaws": ["中华人民共和国民法典"],
        "legalRelationship": "知识产权许可使用关系",
    },
    "keyClauses": [
        {"clauseName": "许可费用", "interpretation": "按年预付许可费", "risk": "逾期违约金过高"},
    ],
    "riskAssessments": [
        {"riskCategory": "违约风险", "level": "高", "description": "违约金可能被认定过高", "prevention": "调整违约金比例"},
    ],
    "complianceCheck": {"regulation": "民法典第五百八十五条", "conformity": "基本符合", "gaps": ["违约金上限未约定"]},
    "businessImpact": {"party": "乙方", "impact": "逾期付款成本较高", "financialImpact": "每日千分之五"},
}, ensure_ascii=False)

IMPROVEMENT_SUGGESTIONS_JSON = json.dumps({
    "suggestions": [
        {
            "priority": "高",
            "problemDescription": "逾期付款违约金比例过高",
            "suggestedModification": "将违约金调整为每日万分之五",
            "expectedEffect": "降低乙方违约成本",
        },
        {
            "priority": "中",
            "problemDescription": "争议解决条款偏向甲方",
            "suggestedModification": "约定由被告所在地人民法院管辖",
            "expectedEffect": "平衡双方诉讼成本",
        },
    ],
}, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """
    Deterministic mock embedding service -- never calls external APIs.

    ``fail_on`` is a collection of substrings; any text containing one of
    them raises EmbeddingProviderError, mimicking a per-chunk provider error.
    """

    def __init__(self, dimensions=8, fail_on=None):
        self._dimensions = dimensions
        self.fail_on = set(fail_on or ())
        self._lock = threading.Lock()
        self.calls = []

    def embed(self, text):
        from execution.contract_rag.exceptions import EmbeddingProviderError

        with self._lock:
            self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingProviderError("mock provider error", provider="mock")
        return self._deterministic_embedding(text)

    def _deterministic_embedding(self, text):
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Mock vector store (no database needed)
# ---------------------------------------------------------------------------

class MockVectorStore:
    """
    Thread-safe in-memory mock of VectorStore.

    Chunks are keyed by (document id, chunk index) like the real table.
    Set ``fail_on`` to an operation name to make it raise VectorStoreError,
    and ``write_delay`` to widen the replace window in concurrency tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.documents = {}
        self.chunks = {}
        self.fail_on = None
        self.write_delay = 0.0
        self._active = {}
        self.max_active_per_document = 0

    def _maybe_fail(self, operation):
        from execution.contract_rag.exceptions import VectorStoreError
        if self.fail_on == operation:
            raise VectorStoreError(f"mock {operation} failure", operation=operation)

    def connect(self):
        pass

    def initialize_schema(self):
        pass

    def register_document(self, document):
        self._maybe_fail("register_document")
        with self._lock:
            self.documents[document.id] = document

    def get_document(self, document_id):
        return self.documents.get(document_id)

    def list_document_ids(self):
        with self._lock:
            return list(self.documents)

    def upsert(self, record_id, vector, metadata, content=""):
        from execution.contract_rag.vector_store import validate_record_metadata

        validate_record_metadata(metadata)
        self._maybe_fail("upsert")
        with self._lock:
            self.chunks[(metadata["doc_id"], metadata["chunk_index"])] = {
                "id": record_id,
                "content": content,
                "embedding": list(vector),
                "metadata": dict(metadata),
            }

    def delete_by_doc_id(self, document_id):
        with self._lock:
            keys = [k for k in self.chunks if k[0] == document_id]
            for key in keys:
                del self.chunks[key]
        return len(keys)

    def replace_document_chunks(self, document_id, records):
        self._maybe_fail("replace_document_chunks")
        with self._lock:
            self._active[document_id] = self._active.get(document_id, 0) + 1
            self.max_active_per_document = max(self.max_active_per_document, self._active[document_id])
        try:
            if self.write_delay:
                time.sleep(self.write_delay)
            with self._lock:
                for key in [k for k in self.chunks if k[0] == document_id]:
                    del self.chunks[key]
                for record in records:
                    self.chunks[(document_id, record.chunk_index)] = {
                        "id": record.record_id,
                        "content": record.content,
                        "embedding": list(record.vector),
                        "metadata": dict(record.metadata),
                    }
        finally:
            with self._lock:
                self._active[document_id] -= 1
        return len(records)

    def get_document_chunks(self, document_id):
        with self._lock:
            rows = [
                {"document_id": k[0], "chunk_index": k[1], **v}
                for k, v in self.chunks.items() if k[0] == document_id
            ]
        return sorted(rows, key=lambda r: r["chunk_index"])

    def close(self):
        pass


@pytest.fixture
def mock_vector_store():
    return MockVectorStore()


# ---------------------------------------------------------------------------
# Mock generative model client
# ---------------------------------------------------------------------------

SECTION_MARKERS = {
    "executive_summary": "【执行摘要】",
    "deep_analysis": "【深度法律分析】",
    "improvement_suggestions": "【改进建议】",
}


class MockLLMClient:
    """
    Returns a canned reply per report section, detected from the prompt.

    A reply may be a string, an exception instance (raised), or None
    (empty reply). ``delays`` maps section -> seconds to sleep first.
    """

    def __init__(self, replies=None, delays=None):
        self.replies = {
            "executive_summary": EXECUTIVE_SUMMARY_JSON,
            "deep_analysis": DEEP_ANALYSIS_JSON,
            "improvement_suggestions": IMPROVEMENT_SUGGESTIONS_JSON,
        }
        self.replies.update(replies or {})
        self.delays = delays or {}
        self.prompts = []

    def generate(self, prompt):
        from execution.contract_rag.exceptions import GenerationError

        self.prompts.append(prompt)
        section = next(
            (name for name, marker in SECTION_MARKERS.items() if marker in prompt),
            None,
        )
        if section in self.delays:
            time.sleep(self.delays[section])

        reply = self.replies.get(section)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            raise GenerationError("LLM returned an empty response")
        return reply


@pytest.fixture
def mock_llm_client():
    return MockLLMClient()


# ---------------------------------------------------------------------------
# Documents and reviews
# ---------------------------------------------------------------------------

@pytest.fixture
def statute_document():
    from execution.contract_rag.models import Document, DocumentType
    return Document(
        id="doc-statute-1",
        text=SAMPLE_STATUTE,
        doc_type=DocumentType.STATUTE,
        filename="中华人民共和国环境保护法.txt",
    )


@pytest.fixture
def contract_document():
    from execution.contract_rag.models import Document, DocumentType
    return Document(
        id="doc-contract-1",
        text=SAMPLE_CONTRACT,
        doc_type=DocumentType.CONTRACT_INSTANCE,
        filename="软件许可合同.docx",
    )


def make_review(risk_level=None, total_risks=3, **kwargs):
    from execution.contract_rag.models import ContractReview
    return ContractReview(
        filename=kwargs.pop("filename", "软件许可合同.docx"),
        content_text=kwargs.pop("content_text", SAMPLE_CONTRACT),
        risk_level=risk_level,
        total_risks=total_risks,
        **kwargs,
    )


@pytest.fixture
def high_risk_review():
    from execution.contract_rag.models import RiskClause, RiskLevel
    return make_review(
        RiskLevel.HIGH,
        total_risks=2,
        id="review-1",
        completed_at=datetime(2024, 3, 1, 10, 30, 0),
        risk_clauses=[
            RiskClause(
                risk_type="违约金过高",
                risk_level=RiskLevel.HIGH,
                clause_text="每日按应付金额的千分之五支付违约金",
                risk_description="违约金可能被法院调减",
                suggestion="调整为每日万分之五",
            ),
            RiskClause(
                risk_type="管辖约定",
                risk_level=RiskLevel.MEDIUM,
                clause_text="提交甲方所在地人民法院诉讼解决",
                risk_description="乙方诉讼成本较高",
                suggestion="约定被告所在地法院管辖",
            ),
        ],
    )


@pytest.fixture
def low_risk_review():
    from execution.contract_rag.models import RiskLevel
    return make_review(RiskLevel.LOW, total_risks=0)


@pytest.fixture
def unassessed_review():
    return make_review(None, total_risks=0)
