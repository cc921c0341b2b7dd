"""
領収書自動入力エージェント

領収書画像をLLMで読み取り、品目ごとに勘定科目・補助科目を判定して
Excel帳票を生成する
"""

__version__ = "3.0.0"
