"""Prompt templates for every stage.

Prompts are built deterministically from typed inputs. The wording is not a
contract; the JSON shapes requested here are what the parsers in
``utils.llm_parse`` understand.
"""

from dataclasses import dataclass

from panelgrade.schemas.evaluation import (
    EngineerField,
    EvaluationResult,
    EvaluatorId,
    StructureAnalysis,
)


@dataclass(frozen=True)
class EvaluatorPersona:
    id: EvaluatorId
    name: str
    persona: str
    focus: tuple[str, ...]
    style: str


EVALUATORS: dict[EvaluatorId, EvaluatorPersona] = {
    EvaluatorId.A: EvaluatorPersona(
        id=EvaluatorId.A,
        name="김학술",
        persona="이론 전문가형",
        focus=("개념 정의의 정확성", "이론적 근거", "최신 기술 동향"),
        style="학술적 엄밀성을 중시하며 용어와 정의의 오류를 놓치지 않는다.",
    ),
    EvaluatorId.B: EvaluatorPersona(
        id=EvaluatorId.B,
        name="박실무",
        persona="실무 전문가형",
        focus=("실무 적용 사례", "구현 가능성", "현장 경험의 반영"),
        style="현업 관점에서 답안이 실제 문제 해결에 쓸모 있는지를 본다.",
    ),
    EvaluatorId.C: EvaluatorPersona(
        id=EvaluatorId.C,
        name="이균형",
        persona="합격 가이드형",
        focus=("답안 구조와 분량", "채점 포인트 충족", "가독성"),
        style="합격 답안의 기준에 비추어 균형 잡힌 시각으로 채점한다.",
    ),
}

_FIELD_NAMES = ", ".join(f.value for f in EngineerField)

_STRUCTURE_TEMPLATE = """\
당신은 기술사 시험 답안의 구조를 사전 분석하는 전문가입니다.
아래 답안을 채점하지 말고, 구조와 형식만 분석하세요.

[선택된 기술사 종목]
{field}

[답안]
{text}

반드시 아래 JSON 형식으로만 응답하세요. 설명 문장이나 마크다운을 붙이지 마세요.
{{
  "detectedField": "{field_names} 중 하나",
  "fieldConfidence": 0-100 사이 정수,
  "fieldReason": "분야를 판단한 근거",
  "structure": {{
    "hasOutline": true/false,
    "hasIntro": true/false,
    "hasBody": true/false,
    "hasConclusion": true/false,
    "structureComment": "구조에 대한 한 줄 평가"
  }},
  "diagrams": {{
    "hasDiagram": true/false,
    "diagramTypes": ["표", "개요도"],
    "diagramComment": "도식 활용에 대한 한 줄 평가"
  }},
  "keywords": {{
    "found": ["답안에서 발견된 핵심 키워드"],
    "fieldSpecific": ["해당 분야 고유 키워드"],
    "missing": ["누락이 추정되는 키워드"],
    "keywordComment": "키워드에 대한 한 줄 평가"
  }},
  "format": {{
    "estimatedPages": 예상 페이지 수(정수),
    "readability": "상/중/하",
    "formatComment": "분량과 가독성에 대한 한 줄 평가"
  }},
  "overallStructureScore": 0-100 사이 정수,
  "structureSummary": "전체 구조 분석 요약"
}}"""

_EVALUATOR_TEMPLATE = """\
당신은 {field} 시험의 채점 위원 '{name}'({persona})입니다.
평가 중점: {focus}
채점 성향: {style}

[사전 구조 분석 결과]
- 감지된 분야: {detected_field} (신뢰도 {field_confidence})
- 구조: 개요 {has_outline}, 서론 {has_intro}, 본론 {has_body}, 결론 {has_conclusion}
- 구조 평가: {structure_comment}
- 발견 키워드: {found_keywords}
- 누락 추정 키워드: {missing_keywords}
- 구조 점수(참고용): {structure_score}
- 요약: {structure_summary}

[답안]
{text}

다섯 항목(이론적 정확성, 실무 적용성, 답안 구조, 표현력, 완성도)을 각 20점 만점으로 채점하고
총점(100점 만점)을 매기세요. 각 항목마다 답안의 문장을 그대로 인용하여 평가하세요.

반드시 아래 JSON 형식으로만 응답하세요.
{{
  "score": 0-100 사이 정수,
  "strengths": ["강점"],
  "weaknesses": ["약점"],
  "comment": "총평",
  "keyPoints": ["강조할 핵심 포인트"],
  "detailedFeedback": {{
    "theory": {{"score": 0-20, "comment": "평가", "quotes": [{{"quote": "답안 인용", "evaluation": "인용에 대한 평가", "isPositive": true}}]}},
    "practical": {{"score": 0-20, "comment": "평가", "quotes": []}},
    "structure": {{"score": 0-20, "comment": "평가", "quotes": []}},
    "expression": {{"score": 0-20, "comment": "평가", "quotes": []}},
    "completeness": {{"score": 0-20, "comment": "평가", "quotes": []}}
  }}
}}"""

_COMPREHENSIVE_TEMPLATE = """\
당신은 {field} 시험 채점 위원장입니다.
세 명의 평가위원 결과를 종합하여 최종 보고서를 작성하세요.

[평균 점수]
{average:.1f}/100

[평가위원별 결과]
{evaluations}

반드시 아래 JSON 형식으로만 응답하세요.
{{
  "predictedGrade": "A+/A/B+/B/C/D/F 중 하나",
  "passStatus": "합격권/경계선/미달 중 하나",
  "overallStrengths": ["종합 강점"],
  "overallWeaknesses": ["종합 약점"],
  "improvements": ["개선 권고사항"],
  "studyGuide": {{
    "priority": ["우선 학습 주제"],
    "resources": ["추천 학습 자료"],
    "tips": ["답안 작성 팁"]
  }}
}}"""

_MODEL_ANSWER_TEMPLATE = """\
당신은 {field} 분야의 기술사 시험 전문가입니다.
아래 원본 답안과 3명의 평가위원 피드백을 바탕으로 수정된 모범 답안을 작성해주세요.

[원본 답안]
{text}

[평가위원 피드백]
{feedback}

[종합 강점]
- {strengths}

[종합 보완점]
- {weaknesses}

[개선 권고사항]
- {improvements}

[작성 지침]
1. 원본 답안의 강점은 유지하고 평가위원들이 지적한 보완점을 모두 반영하세요.
2. 서론(정의, 배경), 본론(핵심 개념, 기술 내용, 사례), 결론(요약, 전망, 제언) 형식을 따르세요.
3. 핵심 키워드와 전문 용어를 적절히 사용하고 4페이지(약 2,000자) 분량으로 작성하세요.
4. JSON이 아닌 순수 텍스트로, 설명 문구 없이 답안 내용만 작성하세요."""

OCR_PROMPT = """\
당신은 한국어 손글씨 OCR 전문가입니다.
이 기술사 시험 답안지의 손글씨를 정확하게 텍스트로 변환해주세요.

1. 흘려 쓴 글씨도 문맥을 고려하여 추론하세요.
2. 수식이나 도표가 있으면 텍스트로 상세히 설명하세요.
3. 판독이 불가능한 부분만 [불명확]으로 표시하세요.
4. 단락, 번호, 기호, 들여쓰기 등 서식을 유지하세요.
5. 기술 용어(API, DB, SQL 등)는 정확하게 인식하세요.

반드시 아래 JSON 형식으로만 응답하세요.
{
  "text": "변환된 전체 텍스트",
  "confidence": 0.0-1.0 사이의 신뢰도,
  "hasFormulas": true/false,
  "hasDiagrams": true/false
}"""


def _yes_no(value: bool) -> str:
    return "있음" if value else "없음"


def _join(items: list[str], sep: str = ", ") -> str:
    return sep.join(items) if items else "없음"


def build_structure_prompt(text: str, field: EngineerField) -> str:
    return _STRUCTURE_TEMPLATE.format(field=field.value, text=text, field_names=_FIELD_NAMES)


def build_evaluator_prompt(
    evaluator_id: EvaluatorId,
    text: str,
    field: EngineerField,
    structure: StructureAnalysis,
) -> str:
    persona = EVALUATORS[evaluator_id]
    return _EVALUATOR_TEMPLATE.format(
        field=field.value,
        name=persona.name,
        persona=persona.persona,
        focus=", ".join(persona.focus),
        style=persona.style,
        detected_field=structure.detected_field.value,
        field_confidence=structure.field_confidence,
        has_outline=_yes_no(structure.structure.has_outline),
        has_intro=_yes_no(structure.structure.has_intro),
        has_body=_yes_no(structure.structure.has_body),
        has_conclusion=_yes_no(structure.structure.has_conclusion),
        structure_comment=structure.structure.structure_comment or "없음",
        found_keywords=_join(structure.keywords.found),
        missing_keywords=_join(structure.keywords.missing),
        structure_score=structure.overall_structure_score,
        structure_summary=structure.structure_summary or "없음",
        text=text,
    )


def format_evaluations(evaluations: list[EvaluationResult]) -> str:
    return "\n\n".join(
        f"[평가위원 {e.evaluator_id.value}]\n"
        f"점수: {e.score}/100\n"
        f"강점: {', '.join(e.strengths)}\n"
        f"약점: {', '.join(e.weaknesses)}\n"
        f"코멘트: {e.comment}"
        for e in evaluations
    )


def build_comprehensive_prompt(
    evaluations: list[EvaluationResult],
    field: EngineerField,
    average: float,
) -> str:
    return _COMPREHENSIVE_TEMPLATE.format(
        field=field.value,
        average=average,
        evaluations=format_evaluations(evaluations),
    )


def build_model_answer_prompt(
    text: str,
    field: EngineerField,
    evaluations: list[EvaluationResult],
    overall_strengths: list[str],
    overall_weaknesses: list[str],
    improvements: list[str],
) -> str:
    blocks = []
    for e in evaluations:
        fb = e.detailed_feedback
        comments = [
            c
            for c in (
                fb.theory.comment,
                fb.practical.comment,
                fb.structure.comment,
                fb.expression.comment,
                fb.completeness.comment,
            )
            if c
        ]
        blocks.append(
            f"[평가위원 {e.evaluator_id.value} - {e.score}점]\n"
            f"강점: {', '.join(e.strengths)}\n"
            f"보완점: {', '.join(e.weaknesses)}\n"
            f"상세 피드백:\n- " + "\n- ".join(comments) + "\n"
            f"코멘트: {e.comment}"
        )
    return _MODEL_ANSWER_TEMPLATE.format(
        field=field.value,
        text=text,
        feedback="\n\n".join(blocks),
        strengths="\n- ".join(overall_strengths),
        weaknesses="\n- ".join(overall_weaknesses),
        improvements="\n- ".join(improvements),
    )
