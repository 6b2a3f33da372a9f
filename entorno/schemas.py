"""
JSON structures and system prompts sent to the chat model.

The client requests JSON mode and validates the reply against the dataclasses
in `entorno.models`, so the field names here must stay in sync with
`Chunk.from_dict`, `Sentence.from_dict`, `LessonData.from_dict` and
`ChatReply.from_dict`.
"""

CHUNK_SCHEMA = """
A chunk is one contiguous piece of a Spanish sentence:
   {
     "text": "exact characters of this piece, including spaces and punctuation",
     "isWord": true,                 // false for whitespace and punctuation
     "meaning": "Chinese gloss",     // words only, omit for non-words
     "lemma": "dictionary form"      // words only, e.g. "fui" -> "ser"
   }

Chunk rules:
1. Split the WHOLE sentence: words, punctuation AND spaces.
2. Joining the "text" of every chunk in order MUST give back the sentence exactly.
3. For words (isWord: true) always give "meaning" (Chinese) and "lemma".
4. For spaces and punctuation set isWord to false and leave out meaning/lemma.
"""

LESSON_SCHEMA = """
{
  "scenario": "short title of the scenario",
  "tips": "one or two practical tips in Chinese",
  "sentences": [
    {
      "spanish": "Hola, ¿cómo estás?",
      "chinese": "你好，你好吗？",
      "chunks": [
        { "text": "Hola", "isWord": true, "meaning": "你好", "lemma": "hola" },
        { "text": ", ", "isWord": false },
        { "text": "¿", "isWord": false },
        { "text": "cómo", "isWord": true, "meaning": "如何", "lemma": "cómo" },
        { "text": " ", "isWord": false },
        { "text": "estás", "isWord": true, "meaning": "你在", "lemma": "estar" },
        { "text": "?", "isWord": false }
      ]
    }
  ]
}
"""

CHAT_REPLY_SCHEMA = """
{
  "spanish": "your reply in Spanish",
  "chinese": "Chinese translation of the reply",
  "chunks": [ ...chunks of the Spanish reply... ]
}
"""

LESSON_SYSTEM_PROMPT = (
    "You are a professional private Spanish tutor for Chinese-speaking learners. "
    "Given a real-life scenario, write a practical A2-level dialogue of 3-5 sentences. "
    "Return ONLY a JSON object with this structure:\n"
    f"{LESSON_SCHEMA}\n"
    f"{CHUNK_SCHEMA}"
)

CHAT_SYSTEM_PROMPT = (
    "Eres un profesor de español amable. Tu estudiante tiene nivel A2. "
    "Mantén respuestas cortas y corrige errores amablemente. "
    "Responde SIEMPRE con un objeto JSON con esta estructura:\n"
    f"{CHAT_REPLY_SCHEMA}\n"
    f"{CHUNK_SCHEMA}"
)


def lesson_user_prompt(scenario: str) -> str:
    return f'Scenario: "{scenario}"\nGenerate the lesson JSON for this scenario.'
